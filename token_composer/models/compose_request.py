from pydantic import BaseModel
from typing import List, Optional


class ComposeRequest(BaseModel):
    token: Optional[str] = None  # "{collectionId}-{tokenId}"
    images: Optional[List[str]] = None  # explicit URLs, drawn untransformed

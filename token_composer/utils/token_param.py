from token_composer.errors import MissingParameterError

TOKEN_SEPARATOR = "-"
TOKEN_PROMPT = (
    "Please provide token parameter in format token={collectionId}-{tokenId}."
)


def parse_token_param(value: str | None) -> tuple[str, str]:
    """
    Splits the composite ``{collectionId}-{tokenId}`` parameter.

    Raises MissingParameterError when the value is absent, has no separator,
    has an empty side or carries more than one separator.
    """
    if not isinstance(value, str) or not value.strip():
        raise MissingParameterError(TOKEN_PROMPT)

    parts = value.strip().split(TOKEN_SEPARATOR)
    if len(parts) != 2:
        raise MissingParameterError(TOKEN_PROMPT)

    collection_id, token_id = (p.strip() for p in parts)
    if not collection_id or not token_id:
        raise MissingParameterError(TOKEN_PROMPT)

    return collection_id, token_id

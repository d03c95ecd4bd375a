import argparse
import logging
import sys
from pathlib import Path

from token_composer.errors import CompositionError, MissingParameterError
from token_composer.render.compositor import (
    CANVAS_POLICIES,
    OUTPUT_FILENAME,
    compose_token_param,
    compose_urls,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token-composer",
        description="Compose a token's layered image into a single PNG.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    compose = sub.add_parser("compose", help="compose a token to a PNG file")
    compose.add_argument("token", nargs="?",
                         help="{collectionId}-{tokenId}")
    compose.add_argument("--image", dest="images", action="append",
                         help="explicit image URL (repeatable, replaces token)")
    compose.add_argument("-o", "--output", default=OUTPUT_FILENAME)
    compose.add_argument("--canvas-policy", choices=CANVAS_POLICIES)

    serve = sub.add_parser("serve", help="run the HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _compose(args) -> int:
    kwargs = {}
    if args.canvas_policy:
        kwargs["canvas_policy"] = args.canvas_policy

    try:
        if args.images:
            composition = compose_urls(args.images, **kwargs)
        else:
            composition = compose_token_param(args.token, **kwargs)
        output = Path(args.output)
        composition.save(output)
    except MissingParameterError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except CompositionError:
        logging.exception("❌ Composition failed")
        print("An error occurred while processing the token data.",
              file=sys.stderr)
        return 1

    width, height = composition.size
    logging.info("💾 Saved %sx%s image to %s", width, height, output)
    return 0


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("token_composer.api.server:app",
                    host=args.host, port=args.port)
        return 0

    return _compose(args)


if __name__ == "__main__":
    sys.exit(main())

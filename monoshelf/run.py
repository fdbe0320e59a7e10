import argparse
import asyncio
import logging
from pathlib import Path

import uvicorn

from monoshelf.config import Settings
from monoshelf.core.display import ReaderDisplay
from monoshelf.core.files import LocalBookFile
from monoshelf.core.session import SessionController

def start_reader(settings: Settings):
    from monoshelf.server import create_app

    print(f"Starting reader at http://{settings.host}:{settings.reader_port}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.reader_port)

def start_auth_server(settings: Settings):
    from monoshelf.web.auth_api import create_auth_app

    app = create_auth_app(settings)
    print(f"Auth API running on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)

async def inspect_book(path: Path) -> bool:
    """Opens a book headlessly and prints what the reader would show."""
    display = ReaderDisplay()
    controller = SessionController(display)
    opened = await controller.open_book(LocalBookFile(path))
    print(f"Meta: {display.meta}")
    if not opened:
        print(f"Status: {display.status}")
        return False

    if display.toc_placeholder:
        print(display.toc_placeholder)
    for link in display.toc:
        print(f"{'  ' * link.depth}{link.label}  ({link.href})")

    if await controller.wait_for_locations():
        print(f"Locations: {controller.session.book.locations.length()}")
    else:
        print("Locations: unavailable")
    print(f"Status: {display.status}")
    controller.reset()
    return True

def main():
    parser = argparse.ArgumentParser(description="Mono Shelf")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("serve", help="Start the reader")
    subparsers.add_parser("auth-server", help="Start the auth API")

    inspect_parser = subparsers.add_parser("inspect", help="Open an EPUB and print its navigation")
    inspect_parser.add_argument("file")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    settings = Settings.from_env()

    if args.command == "serve":
        start_reader(settings)
    elif args.command == "auth-server":
        try:
            start_auth_server(settings)
        except ValueError as e:
            print(f"Error: {e}")
            raise SystemExit(1)
    elif args.command == "inspect":
        if not asyncio.run(inspect_book(Path(args.file))):
            raise SystemExit(1)
    else:
        parser.print_help()

if __name__ == "__main__":
    main()

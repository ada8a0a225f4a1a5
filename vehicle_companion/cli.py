"""Command-line entry point for the Vehicle Companion assistant."""

from __future__ import annotations

import argparse
import asyncio
import sqlite3
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .backend import OpenAIBackend
from .chat import ChatSession
from .config import config
from .dispatcher import DispatchStatus, QueryDispatcher
from .documents import DocumentLifecycle, ManualUploader
from .embeddings import EmbeddingService
from .errors import GatingError, GatingReason, UploadError
from .history import SQLiteQueryHistory
from .manual_index import ManualIndex, ManualIndexer, ManualRetriever
from .models import DocumentStatus, QueryKind, VehicleRef
from .stores import LocalBlobStore, SQLiteDocumentStore, SQLiteVehicleStore

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from logging import Logger

EXIT_COMMANDS = {"exit", "quit", ":q"}

QUERY_COMMANDS: dict[str, QueryKind] = {
    "obd": QueryKind.OBD_LOOKUP,
    "diagnose": QueryKind.DIAGNOSIS,
    "recommend": QueryKind.MAINTENANCE_RECOMMENDATIONS,
}


@dataclass
class Services:
    """Stores and collaborators shared by the commands."""

    vehicles: SQLiteVehicleStore
    documents: SQLiteDocumentStore
    index: ManualIndex
    history: SQLiteQueryHistory
    blobs: LocalBlobStore

    @classmethod
    def open(cls, db_path: Path, storage_dir: Path) -> Services:
        return cls(
            vehicles=SQLiteVehicleStore(db_path),
            documents=SQLiteDocumentStore(db_path),
            index=ManualIndex(db_path),
            history=SQLiteQueryHistory(db_path),
            blobs=LocalBlobStore(storage_dir),
        )

    def dispatcher(self) -> QueryDispatcher:
        retriever = ManualRetriever(self.index, EmbeddingService())
        backend = OpenAIBackend(retriever=retriever, documents=self.documents)
        return QueryDispatcher(
            backend=backend,
            lifecycle=DocumentLifecycle(self.documents),
            chat_session=ChatSession(),
            vehicles=self.vehicles,
            history=self.history,
        )

    def uploader(self) -> ManualUploader:
        indexer = ManualIndexer(self.documents, self.index, EmbeddingService())
        return ManualUploader(self.documents, self.blobs, indexer=indexer)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        prog="vehicle-companion",
        description="Ask an AI assistant about your vehicle and its manual.",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=config.DATABASE_PATH,
        help=f"SQLite database path (default: {config.DATABASE_PATH}).",
    )
    parser.add_argument(
        "--storage",
        type=Path,
        default=config.BLOB_STORAGE_DIR,
        help=f"Directory for uploaded manuals (default: {config.BLOB_STORAGE_DIR}).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    add_vehicle = commands.add_parser("add-vehicle", help="Register a vehicle.")
    add_vehicle.add_argument("name")
    add_vehicle.add_argument("--id", dest="vehicle_id")
    add_vehicle.add_argument("--brand")
    add_vehicle.add_argument("--model")
    add_vehicle.add_argument("--year", type=int)
    add_vehicle.add_argument("--mileage", type=int)

    commands.add_parser("vehicles", help="List registered vehicles.")

    upload = commands.add_parser("upload", help="Upload and index a PDF manual.")
    upload.add_argument("vehicle_id")
    upload.add_argument("file", type=Path)

    status = commands.add_parser("status", help="Show a vehicle's manual status.")
    status.add_argument("vehicle_id")

    obd = commands.add_parser("obd", help="Explain an OBD-II code.")
    obd.add_argument("vehicle_id")
    obd.add_argument("code")

    diagnose = commands.add_parser("diagnose", help="Diagnose a fault.")
    diagnose.add_argument("vehicle_id")
    diagnose.add_argument("symptoms", nargs="+")

    recommend = commands.add_parser(
        "recommend", help="Recommend preventive maintenance."
    )
    recommend.add_argument("vehicle_id")
    recommend.add_argument("focus", nargs="*", help="Optional area to focus on.")

    chat = commands.add_parser("chat", help="Chat about maintenance.")
    chat.add_argument("vehicle_id")

    history = commands.add_parser("history", help="Show past queries.")
    history.add_argument("vehicle_id")
    history.add_argument("--limit", type=int, default=20)

    return parser.parse_args(argv)


def cmd_add_vehicle(args: argparse.Namespace, services: Services) -> int:
    vehicle = services.vehicles.add(
        VehicleRef(
            id=args.vehicle_id or uuid.uuid4().hex[:8],
            name=args.name,
            brand=args.brand,
            model=args.model,
            year=args.year,
            mileage=args.mileage,
        )
    )
    print(f"Registered {vehicle.display_name()} as {vehicle.id}")
    return 0


def cmd_vehicles(_args: argparse.Namespace, services: Services) -> int:
    lifecycle = DocumentLifecycle(services.documents)
    for vehicle in services.vehicles.list():
        print(f"{vehicle.id}\t{vehicle.display_name()}\t{lifecycle.status(vehicle.id)}")
    return 0


def cmd_upload(args: argparse.Namespace, services: Services) -> int:
    if services.vehicles.get(args.vehicle_id) is None:
        print(f"Unknown vehicle: {args.vehicle_id}", file=sys.stderr)
        return 1
    try:
        document = services.uploader().upload(args.vehicle_id, args.file)
    except UploadError as e:
        print(f"Upload failed: {e}", file=sys.stderr)
        return 1
    print(f"{document.file_name}: {document.status}")
    return 0 if document.status is DocumentStatus.READY else 1


def cmd_status(args: argparse.Namespace, services: Services) -> int:
    document = DocumentLifecycle(services.documents).document(args.vehicle_id)
    if document is None:
        print("absent")
    else:
        print(
            f"{document.status}\t{document.file_name}\t{document.file_size_bytes} bytes"
            f"\t{document.uploaded_at.isoformat()}"
        )
    return 0


def cmd_query(args: argparse.Namespace, services: Services) -> int:
    kind = QUERY_COMMANDS[args.command]
    if kind is QueryKind.OBD_LOOKUP:
        user_input = args.code
    elif kind is QueryKind.DIAGNOSIS:
        user_input = " ".join(args.symptoms)
    else:
        user_input = " ".join(args.focus)
    dispatcher = services.dispatcher()
    dispatcher.navigate(args.vehicle_id)
    result = asyncio.run(dispatcher.dispatch(kind, args.vehicle_id, user_input))
    print(result.message)
    return 0 if result.ok else 1


def cmd_chat(
    args: argparse.Namespace,
    services: Services,
    read_line: Callable[[str], str] = input,
) -> int:
    dispatcher = services.dispatcher()
    dispatcher.navigate(args.vehicle_id)

    async def _loop() -> int:
        while True:
            try:
                question = read_line("> ")
            except EOFError:
                return 0
            if question.strip().lower() in EXIT_COMMANDS:
                return 0
            if not question.strip():
                continue
            result = await dispatcher.dispatch(
                QueryKind.MAINTENANCE_CHAT, args.vehicle_id, question
            )
            print(result.message)
            if (
                result.status is DispatchStatus.BLOCKED
                and isinstance(result.error, GatingError)
                and result.error.reason is GatingReason.DOCUMENT_REQUIRED
            ):
                return 1

    return asyncio.run(_loop())


def cmd_history(args: argparse.Namespace, services: Services) -> int:
    for entry in services.history.list_for_vehicle(args.vehicle_id, args.limit):
        print(f"[{entry.created_at:%Y-%m-%d %H:%M}] {entry.kind}: {entry.user_input}")
        print(entry.answer)
        print()
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, Services], int]] = {
    "add-vehicle": cmd_add_vehicle,
    "vehicles": cmd_vehicles,
    "upload": cmd_upload,
    "status": cmd_status,
    "obd": cmd_query,
    "diagnose": cmd_query,
    "recommend": cmd_query,
    "chat": cmd_chat,
    "history": cmd_history,
}

NEEDS_OPENAI = {"upload", "obd", "diagnose", "recommend", "chat"}


def run_command(args: argparse.Namespace, services: Services, logger: Logger) -> int:
    """Run the selected command and return its exit code."""  # noqa: DOC201
    try:
        return COMMANDS[args.command](args, services)
    except KeyboardInterrupt:
        logger.info("Vehicle Companion stopped by user")
        return 0
    except sqlite3.Error:
        logger.exception("Database error while running %s", args.command)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run a command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    if args.command in NEEDS_OPENAI:
        try:
            config.validate()
        except ValueError:
            logger.exception("Configuration invalid")
            return 1

    services = Services.open(args.db, args.storage)
    return run_command(args, services, logger)


if __name__ == "__main__":
    sys.exit(main())

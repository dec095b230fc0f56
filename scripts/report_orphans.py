"""Print the attachments the cleanup job would delete, without deleting them."""

from __future__ import annotations

import asyncio
from typing import Iterable

from media_janitor.config.settings import get_settings
from media_janitor.monitoring.logging import configure_logging
from media_janitor.services.cleanup import build_service
from media_janitor.services.deleter import batches


def print_results(ids: Iterable[int], batch_size: int) -> None:
    ids = list(ids)
    if not ids:
        print("No attachments to delete.")
        return
    chunks = batches(ids, batch_size)
    print(f"{len(ids)} orphan attachments, {len(chunks)} batches of up to {batch_size}:")
    for number, chunk in enumerate(chunks, start=1):
        print(f"  batch {number}: {', '.join(str(item) for item in chunk)}")


async def _collect() -> tuple[list[int], int]:
    service = build_service(get_settings())
    try:
        await service.init_db()
        return await service.find_orphans(), service.batch_size
    finally:
        await service.dispose()


def main() -> None:
    configure_logging()
    ids, batch_size = asyncio.run(_collect())
    print_results(ids, batch_size)


if __name__ == "__main__":
    main()

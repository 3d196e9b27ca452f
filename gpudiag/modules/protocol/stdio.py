"""
Newline-delimited JSON-RPC over a byte stream pair (normally stdin/stdout).
"""

import asyncio
import json
import logging
import sys
from typing import BinaryIO, Optional, Tuple

from .dispatcher import ProtocolDispatcher
from .models import ErrorCode, ProtocolResponse
from .sessions import Session

logger = logging.getLogger(__name__)

STDIO_SESSION_ID = "stdio"
# Tool replies from large clusters can be big
MAX_LINE_BYTES = 16 * 1024 * 1024


async def open_stdio() -> Tuple[asyncio.StreamReader, BinaryIO]:
    """Wrap the process's stdin in a StreamReader; replies go to stdout."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader, sys.stdout.buffer


async def serve_stdio(
    dispatcher: ProtocolDispatcher,
    reader: asyncio.StreamReader,
    writer: BinaryIO,
    max_requests: int = 0,
    session: Optional[Session] = None,
) -> int:
    """
    Serve requests until EOF or max_requests messages have been processed.

    Args:
        dispatcher: Protocol dispatcher
        reader: Source of newline-delimited messages
        writer: Sink for responses; flushed after every line
        max_requests: Stop after this many non-blank messages (0 = no limit)
        session: Session to use; one implicit session is created if omitted

    Returns:
        Number of messages processed
    """
    session = session or Session(session_id=STDIO_SESSION_ID)
    processed = 0

    while True:
        try:
            line = await reader.readline()
        except ValueError as e:
            # Over-limit line; the reader has already discarded it
            logger.warning(f"Dropping oversized message: {e}")
            response = ProtocolResponse.failure(None, ErrorCode.PARSE_ERROR, "Parse error").to_dict()
        else:
            if not line:
                logger.info("stdin closed")
                break
            if not line.strip():
                continue
            response = await dispatcher.handle_raw(line, session)

        processed += 1
        if response is not None:
            writer.write(json.dumps(response).encode("utf-8") + b"\n")
            writer.flush()

        if max_requests and processed >= max_requests:
            logger.info(f"Processed {processed} requests, exiting")
            break

    return processed

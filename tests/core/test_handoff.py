import asyncio

import pytest

from supervisorrpc.errors import TransportError
from supervisorrpc.handoff import BufferClosedError, HandoffBuffer

pytestmark = pytest.mark.asyncio


async def test_write_waits_for_reader():
    buf = HandoffBuffer()
    writer = asyncio.create_task(buf.write(b"abc"))
    await asyncio.sleep(0.01)

    assert not writer.done()
    assert buf.pending == 1

    assert await buf.read() == b"abc"
    await asyncio.wait_for(writer, 1)
    assert buf.pending == 0


async def test_reader_waits_for_writer():
    buf = HandoffBuffer()
    reader = asyncio.create_task(buf.read())
    await asyncio.sleep(0.01)
    assert not reader.done()

    await asyncio.gather(buf.write(b"x"), reader)
    assert reader.result() == b"x"


async def test_clean_close_reads_empty():
    buf = HandoffBuffer()
    buf.close()
    assert await buf.read() == b""
    assert buf.closed


async def test_error_close_raises_to_reader():
    buf = HandoffBuffer()
    buf.close(TransportError("connection refused"))
    with pytest.raises(TransportError, match="connection refused"):
        await buf.read()


async def test_close_wakes_blocked_writer():
    buf = HandoffBuffer()
    writer = asyncio.create_task(buf.write(b"never read"))
    await asyncio.sleep(0.01)

    buf.close(TransportError("gone"))

    with pytest.raises(BufferClosedError, match="gone"):
        await asyncio.wait_for(writer, 1)


async def test_write_after_close_fails():
    buf = HandoffBuffer()
    buf.close()
    with pytest.raises(BufferClosedError):
        await buf.write(b"late")


async def test_first_close_wins():
    buf = HandoffBuffer()
    buf.close(TransportError("first"))
    buf.close(TransportError("second"))
    buf.close()

    with pytest.raises(TransportError, match="first"):
        await buf.read()


async def test_empty_write_is_noop():
    buf = HandoffBuffer()
    await asyncio.wait_for(buf.write(b""), 1)
    assert buf.pending == 0

"""Incremental parser for the Server-Sent Events wire format.

Pure and stateful: feed it chunks in arrival order, get whole records back.
Chunks may split anywhere, including in the middle of a line or a multi-byte
UTF-8 sequence.
"""

import codecs
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Union


@dataclass(frozen=True)
class SSERecord:
    """One dispatched record. ``retry`` is 0 when the server sent none."""
    event: str = ""
    data: str = ""
    id: str = ""
    retry: int = 0


class SSEParser:
    """
    Turns a byte or text stream into SSERecords.

    Lines end at LF (an optional CR before it is dropped). A blank line
    dispatches the pending record if it has data or an event type.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._reset_pending()

    def _reset_pending(self) -> None:
        self._event = ""
        self._data = ""
        self._id = ""
        self._retry = 0

    def reset(self) -> None:
        """Drop buffered input and any pending record."""
        self._decoder.reset()
        self._buffer = ""
        self._reset_pending()

    def feed(
        self,
        chunk: Union[str, bytes],
        on_record: Callable[[SSERecord], None],
    ) -> None:
        """
        Consume one chunk, calling ``on_record`` for each completed record.

        Args:
            chunk: Raw bytes or already-decoded text
            on_record: Called once per record, in wire order
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        while True:
            line_end = self._buffer.find("\n")
            if line_end == -1:
                break
            line = self._buffer[:line_end]
            self._buffer = self._buffer[line_end + 1:]
            if line.endswith("\r"):
                line = line[:-1]
            self._process_line(line, on_record)

    def _process_line(
        self, line: str, on_record: Callable[[SSERecord], None]
    ) -> None:
        if not line:
            self._dispatch(on_record)
            return

        if line.startswith(":"):
            return

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            if self._data:
                self._data += "\n"
            self._data += value
        elif field == "id":
            self._id = value
        elif field == "retry":
            try:
                self._retry = int(value)
            except ValueError:
                pass

    def _dispatch(self, on_record: Callable[[SSERecord], None]) -> None:
        if not self._data and not self._event:
            return
        data = self._data
        if data.endswith("\n"):
            data = data[:-1]
        record = SSERecord(
            event=self._event, data=data, id=self._id, retry=self._retry
        )
        self._reset_pending()
        on_record(record)


def parse_records(chunks: Iterable[Union[str, bytes]]) -> Iterator[SSERecord]:
    """Parse an iterable of chunks, yielding records as they complete."""
    parser = SSEParser()
    ready: List[SSERecord] = []
    for chunk in chunks:
        parser.feed(chunk, ready.append)
        while ready:
            yield ready.pop(0)

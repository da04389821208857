"""Parsing of azcopy's ``--output-type json`` output.

Every line azcopy prints in JSON mode is an object such as::

    {"TimeStamp": "2024-05-02T10:00:00Z", "MessageType": "Init",
     "MessageContent": "{\\"JobID\\":\\"...\\",\\"LogFileLocation\\":\\"...\\"}"}

``MessageContent`` is itself a JSON document for ``Init``, ``Progress`` and
``EndOfJob`` messages and plain text for ``Info`` and ``Error`` messages.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List

logger = logging.getLogger(__name__)

RAW = "Raw"

# copy reports TotalTransfers, sync reports CopyTotalTransfers
_COUNTER_KEYS = {
    "total_transfers": ("TotalTransfers", "CopyTotalTransfers"),
    "completed": ("TransfersCompleted", "CopyTransfersCompleted"),
    "failed": ("TransfersFailed", "CopyTransfersFailed"),
    "skipped": ("TransfersSkipped", "CopyTransfersSkipped"),
    "bytes_transferred": ("TotalBytesTransferred", "BytesTransferred"),
}


@dataclass
class AzCopyMessage:
    timestamp: str
    message_type: str
    content: Any
    raw: str


def _decode_content(content: Any) -> Any:
    if isinstance(content, str) and content.strip().startswith("{"):
        try:
            return json.loads(content)
        except ValueError:
            return content
    return content


def parse_json_lines(text: str) -> Iterator[AzCopyMessage]:
    """Yield one message per non-empty line; non-JSON lines have type ``Raw``."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            data = json.loads(stripped)
        except ValueError:
            data = None
        if not isinstance(data, dict) or "MessageType" not in data:
            yield AzCopyMessage(timestamp="", message_type=RAW, content=stripped, raw=line)
            continue
        yield AzCopyMessage(
            timestamp=str(data.get("TimeStamp", "")),
            message_type=str(data.get("MessageType", "")),
            content=_decode_content(data.get("MessageContent", "")),
            raw=line,
        )


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


@dataclass
class AzCopyJobSummary:
    """Counters and status of one azcopy job."""

    job_id: str = ""
    log_file: str = ""
    job_status: str = ""
    total_transfers: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_transferred: int = 0
    final: bool = False
    errors: List[str] = field(default_factory=list)
    raw_lines: List[str] = field(default_factory=list)

    @property
    def has_final_status(self) -> bool:
        return self.final and bool(self.job_status)

    def update(self, content: Dict[str, Any]) -> None:
        """Take job id, status and counters from a decoded message."""
        if content.get("JobID"):
            self.job_id = str(content["JobID"])
        if content.get("LogFileLocation"):
            self.log_file = str(content["LogFileLocation"])
        if content.get("JobStatus"):
            self.job_status = str(content["JobStatus"])
        for attr, keys in _COUNTER_KEYS.items():
            for key in keys:
                if key in content:
                    setattr(self, attr, _to_int(content[key]))
                    break

    def merge(self, other: "AzCopyJobSummary") -> None:
        """Complete this summary with the status of a later query."""
        if other.job_status:
            self.job_status = other.job_status
            self.final = self.final or other.final
            for attr in _COUNTER_KEYS:
                setattr(self, attr, getattr(other, attr))
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw_lines")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AzCopyJobSummary":
        return cls(
            job_id=str(data.get("job_id", "")),
            log_file=str(data.get("log_file", "")),
            job_status=str(data.get("job_status", "")),
            total_transfers=_to_int(data.get("total_transfers")),
            completed=_to_int(data.get("completed")),
            failed=_to_int(data.get("failed")),
            skipped=_to_int(data.get("skipped")),
            bytes_transferred=_to_int(data.get("bytes_transferred")),
            final=bool(data.get("final", False)),
            errors=list(data.get("errors", [])),
        )


def summarize_output(text: str) -> AzCopyJobSummary:
    """Fold the messages of one azcopy run into a job summary."""
    summary = AzCopyJobSummary()
    for message in parse_json_lines(text):
        kind = message.message_type
        if kind == RAW:
            summary.raw_lines.append(message.content)
        elif kind == "Error":
            summary.errors.append(str(message.content).strip())
        elif isinstance(message.content, dict):
            summary.update(message.content)
            if kind == "EndOfJob":
                summary.final = True
        else:
            logger.debug(f"azcopy {kind}: {message.content}")
    return summary

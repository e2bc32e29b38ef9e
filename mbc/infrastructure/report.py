import json
import logging
from pathlib import Path
from typing import Any, Dict

from mbc.domain.models import BatchResult


def report_payload(result: BatchResult) -> Dict[str, Any]:
    # model_dump_json writes inf/nan (PSNR of identical inputs) as null
    payload = json.loads(result.model_dump_json())
    payload["summary"] = {
        "total_jobs": result.total_jobs,
        "space_saved_bytes": result.space_saved_bytes,
        "compression_ratio": round(result.compression_ratio, 4),
    }
    return payload


class JsonReportWriter:
    """Persists a BatchResult as a JSON document."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def write(self, result: BatchResult, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_text(json.dumps(report_payload(result), indent=2), encoding="utf-8")
        tmp_path.replace(path)
        self.logger.info(f"Report written: {path}")
        return path

import json

from mbc.domain.models import BatchResult, FailureRecord, QualityMetrics, QualityRecord
from mbc.infrastructure.report import JsonReportWriter, report_payload


def _result():
    return BatchResult(
        success_count=1,
        failed_count=1,
        total_original_bytes=4000,
        total_converted_bytes=1000,
        quality_records=[QualityRecord(
            index=0,
            source_name="a.mp4",
            output_name="a.mp4",
            original_size_bytes=4000,
            converted_size_bytes=1000,
            metrics=QualityMetrics(ssim=0.98, psnr=float("inf")),
        )],
        failures=[FailureRecord(index=1, source_name="b.mp4", error_message="Encoder exited with code 1")],
    )


def test_report_payload_summary():
    payload = report_payload(_result())
    assert payload["summary"] == {"total_jobs": 2, "space_saved_bytes": 3000, "compression_ratio": 0.25}
    assert payload["failures"][0]["source_name"] == "b.mp4"


def test_report_writer_produces_valid_json(tmp_path):
    path = tmp_path / "reports" / "batch.json"
    JsonReportWriter().write(_result(), path)

    data = json.loads(path.read_text())
    assert data["success_count"] == 1
    assert data["quality_records"][0]["metrics"]["ssim"] == 0.98
    # inf is not valid JSON
    assert data["quality_records"][0]["metrics"]["psnr"] is None
    assert not (tmp_path / "reports" / "batch.json.part").exists()

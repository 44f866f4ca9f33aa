"""Tests for batch issuance."""

import asyncio

import pytest

from certanchor.common.exceptions import ValidationError
from certanchor.issuance.batch import BatchCoordinator
from certanchor.issuance.schemas import missing_fields, normalize_item


def _item(i: int, **overrides) -> dict:
    item = {
        "subject_name": f"Student {i}",
        "subject_email": f"student{i}@example.com",
        "course_name": "Data Science Essentials",
        "guardian_name": f"Guardian {i}",
        "district": "Pune",
        "state": "Maharashtra",
    }
    item.update(overrides)
    return item


class RecordingOrchestrator:
    """Stands in for the orchestrator and tracks concurrency."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.order: list[str] = []

    async def issue(self, request):
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.order.append(request.subject_name)
        await asyncio.sleep(0.01)
        self.active -= 1
        return request


class TestBatchValidation:
    async def test_empty_batch_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.batch.issue_batch([], "registrar")

    async def test_over_ceiling_rejected_not_truncated(self, pipeline):
        coordinator = BatchCoordinator(pipeline.orchestrator, max_items=3, group_size=2)
        with pytest.raises(ValidationError, match="exceeds"):
            await coordinator.issue_batch([_item(i) for i in range(4)], "registrar")
        async with pipeline.db.get_session() as session:
            _, total = await pipeline.certificates.search(session)
        assert total == 0

    async def test_blank_issuer_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.batch.issue_batch([_item(0)], "  ")


class TestBatchIssue:
    @pytest.mark.parametrize("n,k", [(1, 0), (4, 0), (6, 3), (7, 6)])
    async def test_failure_isolation(self, pipeline, n, k):
        items = [_item(i) for i in range(n)]
        del items[k]["course_name"]
        result = await pipeline.batch.issue_batch(items, "registrar")

        assert result.total == n
        assert len(result.successful) == n - 1
        assert len(result.failed) == 1
        assert result.failed[0].index == k
        assert result.failed[0].code == "VALIDATION_ERROR"
        assert "course_name" in result.failed[0].error

    async def test_results_keep_item_indices(self, pipeline):
        result = await pipeline.batch.issue_batch([_item(i) for i in range(7)], "registrar")
        assert [s.index for s in result.successful] == list(range(7))
        ids = {s.result.record.id for s in result.successful}
        assert len(ids) == 7

    async def test_hard_failure_isolated(self, pipeline, renderer):
        real_render = renderer.render

        async def flaky_render(record):
            if record.subject_name == "Student 2":
                from certanchor.common.exceptions import RenderingFailure
                raise RenderingFailure("font missing")
            return await real_render(record)

        renderer.render = flaky_render
        result = await pipeline.batch.issue_batch([_item(i) for i in range(5)], "registrar")
        assert len(result.successful) == 4
        assert result.failed[0].index == 2
        assert result.failed[0].code == "RENDERING_FAILED"

    async def test_issued_by_applied(self, pipeline):
        result = await pipeline.batch.issue_batch([_item(0)], "dean@example.org")
        assert result.successful[0].result.record.issued_by == "dean@example.org"

    async def test_invalid_email_is_item_failure(self, pipeline):
        result = await pipeline.batch.issue_batch(
            [_item(0), _item(1, subject_email="not-an-email")], "registrar",
        )
        assert [f.index for f in result.failed] == [1]
        assert "subject_email" in result.failed[0].error

    async def test_non_object_item(self, pipeline):
        result = await pipeline.batch.issue_batch([_item(0), "oops"], "registrar")
        assert result.failed[0].index == 1


class TestGrouping:
    async def test_bounded_parallelism(self):
        orchestrator = RecordingOrchestrator()
        coordinator = BatchCoordinator(orchestrator, max_items=50, group_size=5)
        result = await coordinator.issue_batch([_item(i) for i in range(12)], "registrar")
        assert len(result.successful) == 12
        assert orchestrator.peak == 5

    async def test_groups_run_in_order(self):
        orchestrator = RecordingOrchestrator()
        coordinator = BatchCoordinator(orchestrator, max_items=50, group_size=2)
        await coordinator.issue_batch([_item(i) for i in range(6)], "registrar")
        groups = [set(orchestrator.order[i:i + 2]) for i in range(0, 6, 2)]
        assert groups == [
            {"Student 0", "Student 1"},
            {"Student 2", "Student 3"},
            {"Student 4", "Student 5"},
        ]


class TestItemHelpers:
    def test_missing_fields_blank_and_absent(self):
        item = _item(0, district="  ")
        del item["state"]
        assert missing_fields(item) == ["district", "state"]

    def test_camel_case_aliases(self):
        data = normalize_item({
            "studentName": "Asha Rao",
            "email": "asha@example.com",
            "courseName": "Statistics",
            "fatherName": "Ravi Rao",
            "district": "Pune",
            "state": "Maharashtra",
        })
        assert missing_fields(data) == []
        assert data["subject_name"] == "Asha Rao"

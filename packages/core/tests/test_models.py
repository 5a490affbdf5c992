"""Domain Models 单元测试

测试内容：
1. 任务作用域二选一校验
2. metadata 标签联合按任务类型补齐与校验
3. metadata 合并只新增 / 覆盖
4. Actor / Event 构造
"""

from datetime import UTC, datetime

import pytest
from donorflow.core.models import (
    Actor,
    ActorRole,
    AssignedRole,
    CommitmentMetadata,
    Event,
    EventType,
    GenericMetadata,
    SigningMetadata,
    StateTransitionPayload,
    Task,
    TaskStatus,
    TaskType,
    ValuationMetadata,
    WorkflowScope,
    metadata_kind_for,
)
from pydantic import ValidationError


def _task(**overrides) -> Task:
    now = datetime.now(UTC)
    fields = {
        "task_id": "p1_sign_nda",
        "participant_id": "p1",
        "title": "Donor: Sign NDA",
        "type": TaskType.DOCUSIGN_SIGNATURE,
        "assigned_role": AssignedRole.DONOR,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Task(**fields)


class TestWorkflowScope:
    def test_key(self):
        assert WorkflowScope.participant("p1").key == "participant:p1"
        assert WorkflowScope.donation("d1").key == "donation:d1"

    def test_task_scope_property(self):
        assert _task().scope == WorkflowScope.participant("p1")
        donation_task = _task(participant_id=None, donation_id="d1")
        assert donation_task.scope == WorkflowScope.donation("d1")

    def test_task_requires_exactly_one_scope(self):
        with pytest.raises(ValidationError):
            _task(participant_id=None)
        with pytest.raises(ValidationError):
            _task(donation_id="d1")


class TestTaskMetadata:
    def test_default_metadata_follows_type(self):
        task = _task()
        assert isinstance(task.metadata, SigningMetadata)
        assert task.status == TaskStatus.BLOCKED

    def test_metadata_dict_without_kind_is_filled(self):
        task = _task(metadata={"docusign_envelope_id": "env-1"})
        assert isinstance(task.metadata, SigningMetadata)
        assert task.metadata.docusign_envelope_id == "env-1"

    def test_metadata_kind_must_match_type(self):
        with pytest.raises(ValidationError):
            _task(metadata=ValuationMetadata())

    def test_unknown_field_rejected_for_typed_variant(self):
        with pytest.raises(ValidationError):
            _task(metadata={"not_a_field": 1})

    def test_generic_metadata_is_open(self):
        task = _task(type=TaskType.OTHER, metadata={"receipt_number": "R-1"})
        assert isinstance(task.metadata, GenericMetadata)
        assert task.metadata.model_dump()["receipt_number"] == "R-1"

    @pytest.mark.parametrize(
        "task_type,kind",
        [
            (TaskType.DOCUSIGN_SIGNATURE, "signing"),
            (TaskType.COMMITMENT_DECISION, "commitment"),
            (TaskType.INVITATION, "invitation"),
            (TaskType.DOCUMENT_UPLOAD, "document"),
            (TaskType.AI_APPRAISAL_SUBMISSION, "valuation"),
            (TaskType.PAYMENT_PROCESSING, "generic"),
        ],
    )
    def test_metadata_kind_for(self, task_type: TaskType, kind: str):
        assert metadata_kind_for(task_type) == kind

    def test_merge_adds_and_overwrites_without_dropping(self):
        metadata = SigningMetadata(docusign_envelope_id="env-1", envelope_status="sent")
        merged = metadata.merged({"envelope_status": "completed", "signed_document_url": "u"})
        assert merged.docusign_envelope_id == "env-1"
        assert merged.envelope_status == "completed"
        assert merged.signed_document_url == "u"
        # 原实例不变
        assert metadata.envelope_status == "sent"

    def test_merge_cannot_change_kind(self):
        with pytest.raises(ValueError):
            CommitmentMetadata().merged({"kind": "signing"})

    def test_task_json_roundtrip_keeps_variant(self):
        task = _task(metadata={"docusign_envelope_id": "env-1"})
        restored = Task.model_validate_json(task.model_dump_json())
        assert isinstance(restored.metadata, SigningMetadata)
        assert restored == task


class TestActor:
    def test_admin_and_system_are_admins(self):
        assert Actor(actor_id="a", role=ActorRole.ADMIN).is_admin
        assert Actor.system("docusign-webhook").is_admin
        assert not Actor(actor_id="d", role=ActorRole.DONOR).is_admin


class TestEvent:
    def test_new_event(self):
        event = Event.new(
            task_id="p1_sign_nda",
            scope_key="participant:p1",
            event_type=EventType.STATE_TRANSITION,
            actor_id="donor-1",
            payload=StateTransitionPayload(
                from_status=TaskStatus.PENDING,
                to_status=TaskStatus.COMPLETED,
            ),
        )
        assert len(event.event_id) == 26
        assert event.trace_id == "trace-p1_sign_nda"
        assert event.payload["to_status"] == "completed"

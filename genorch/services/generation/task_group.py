"""
Task groups

A task group fans one storyboard out into one generation job per shot.
Members run with bounded concurrency, fail independently and can be retried
one at a time. The group's status and progress are derived from its members.
"""

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

from genorch.core.config import settings
from genorch.core.exceptions import ConfigurationError, GenOrchException
from genorch.models.generation import (
    CanonicalConfig, GenerationCategory, GenerationJob, JobStatus, SegmentDescriptor
)

if TYPE_CHECKING:
    from .orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_SHOT_DURATION = 5.0


@dataclass
class TaskGroupMember:
    """One shot's slot in a group"""
    segment: SegmentDescriptor
    job_id: Optional[str] = None
    submit_error: Optional[str] = None
    attempts: int = 0


@dataclass
class TaskGroup:
    id: str
    config: CanonicalConfig
    category: GenerationCategory
    members: List[TaskGroupMember]
    model_id: Optional[str] = None
    cancelled: bool = False

    @property
    def shots(self) -> List[SegmentDescriptor]:
        return [member.segment for member in self.members]

    def member(self, segment_id: str) -> TaskGroupMember:
        for member in self.members:
            if member.segment.segment_id == segment_id:
                return member
        raise ConfigurationError(f"Segment {segment_id} is not part of task group {self.id}")


def aggregate_status(statuses: Sequence[JobStatus], progresses: Sequence[int] = ()) -> JobStatus:
    """Group status derived from member statuses"""
    statuses = [JobStatus(status) for status in statuses]
    if statuses and all(status == JobStatus.COMPLETED for status in statuses):
        return JobStatus.COMPLETED

    active = [s for s in statuses if s in (JobStatus.QUEUED, JobStatus.PROCESSING)]
    if JobStatus.ERROR in statuses and not active:
        return JobStatus.ERROR

    if JobStatus.PROCESSING in statuses or any(p > 0 for p in progresses):
        return JobStatus.PROCESSING
    if any(s == JobStatus.COMPLETED for s in statuses):
        return JobStatus.PROCESSING
    return JobStatus.QUEUED


def aggregate_progress(progresses: Sequence[int]) -> int:
    """Floor of the mean member progress"""
    if not progresses:
        return 0
    return math.floor(sum(progresses) / len(progresses))


def build_story_prompt(shots: Sequence[SegmentDescriptor]) -> str:
    """Combine shots into one story-mode prompt"""
    blocks = []
    for index, shot in enumerate(shots, start=1):
        duration = shot.duration or DEFAULT_SHOT_DURATION
        scene = shot.description or shot.prompt or ""
        blocks.append(f"Shot {index}:\nduration: {duration:.1f}sec\nScene: {scene}")
    return "\n\n".join(blocks)


class TaskGroupCoordinator:
    """Runs task groups on top of the orchestrator's single-job operations"""

    def __init__(self, orchestrator: "GenerationOrchestrator", concurrency: Optional[int] = None):
        self.orchestrator = orchestrator
        self.concurrency = concurrency or settings.TASK_GROUP_CONCURRENCY
        self.groups: Dict[str, TaskGroup] = {}

    def create_group(
        self,
        shots: Sequence[SegmentDescriptor],
        config: CanonicalConfig,
        category: GenerationCategory = GenerationCategory.VIDEO,
        model_id: Optional[str] = None
    ) -> TaskGroup:
        if not shots:
            raise ConfigurationError("A task group needs at least one shot")

        segment_ids = [shot.segment_id for shot in shots]
        if len(set(segment_ids)) != len(segment_ids):
            raise ConfigurationError("Segment ids within a task group must be unique")

        group = TaskGroup(
            id=str(uuid.uuid4()),
            config=config,
            category=GenerationCategory(category),
            members=[TaskGroupMember(segment=shot) for shot in shots],
            model_id=model_id
        )
        self.groups[group.id] = group
        logger.info(f"Created task group {group.id} with {len(shots)} shots")
        return group

    async def run(self, group: TaskGroup) -> TaskGroup:
        """Submit and poll every member, at most `concurrency` at a time"""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_member(member: TaskGroupMember):
            async with semaphore:
                if group.cancelled:
                    return
                await self._submit_and_wait(group, member)

        results = await asyncio.gather(
            *[run_member(member) for member in group.members],
            return_exceptions=True
        )

        for member, result in zip(group.members, results):
            if isinstance(result, Exception):
                logger.error(f"Task group {group.id} segment {member.segment.segment_id} crashed: {result}")
                member.submit_error = member.submit_error or str(result)

        logger.info(
            f"Task group {group.id} finished as {self.aggregate_status(group).value} "
            f"({self.progress(group)}%)"
        )
        return group

    async def retry_segment(self, group: TaskGroup, segment_id: str) -> Optional[GenerationJob]:
        """Resubmit one failed member; siblings are left alone"""
        member = group.member(segment_id)
        status = self._member_status(member)
        if status != JobStatus.ERROR:
            raise ConfigurationError(
                f"Segment {segment_id} is {status.value}, only failed segments can be retried"
            )

        logger.info(f"Retrying segment {segment_id} of task group {group.id}")
        return await self._submit_and_wait(group, member)

    def cancel(self, group: TaskGroup):
        """Stop local polling of every non-terminal member"""
        group.cancelled = True
        for member in group.members:
            if member.job_id is None:
                continue
            job = self.orchestrator.get_status(member.job_id)
            if not job.is_terminal:
                self.orchestrator.cancel(member.job_id)
        logger.info(f"Cancelled task group {group.id}")

    def aggregate_status(self, group: TaskGroup) -> JobStatus:
        return aggregate_status(
            [self._member_status(m) for m in group.members],
            [self._member_progress(m) for m in group.members]
        )

    def progress(self, group: TaskGroup) -> int:
        return aggregate_progress([self._member_progress(m) for m in group.members])

    def member_jobs(self, group: TaskGroup) -> List[Optional[GenerationJob]]:
        return [
            self.orchestrator.get_status(m.job_id) if m.job_id else None
            for m in group.members
        ]

    async def submit_story(
        self,
        shots: Sequence[SegmentDescriptor],
        config: CanonicalConfig,
        category: GenerationCategory = GenerationCategory.VIDEO,
        model_id: Optional[str] = None,
        reference_asset: Optional[str] = None
    ) -> str:
        """Submit every shot as one combined story-mode job"""
        if not shots:
            raise ConfigurationError("A story needs at least one shot")

        if reference_asset is None:
            reference_asset = next((s.reference_asset for s in shots if s.reference_asset), None)

        return await self.orchestrator.submit(
            category,
            build_story_prompt(shots),
            config,
            reference_asset=reference_asset,
            model_id=model_id
        )

    async def _submit_and_wait(self, group: TaskGroup, member: TaskGroupMember) -> Optional[GenerationJob]:
        member.attempts += 1
        member.submit_error = None
        segment = member.segment

        try:
            if member.job_id is None:
                member.job_id = await self.orchestrator.submit(
                    group.category,
                    segment.prompt,
                    group.config,
                    reference_asset=segment.reference_asset,
                    model_id=group.model_id
                )
            else:
                member.job_id = await self.orchestrator.resubmit(member.job_id)
        except GenOrchException as e:
            logger.error(f"Task group {group.id} segment {segment.segment_id} submission failed: {e}")
            member.submit_error = str(e)
            return None

        return await self.orchestrator.wait(member.job_id)

    def _member_status(self, member: TaskGroupMember) -> JobStatus:
        if member.submit_error is not None:
            return JobStatus.ERROR
        if member.job_id is None:
            return JobStatus.QUEUED
        return self.orchestrator.get_status(member.job_id).status

    def _member_progress(self, member: TaskGroupMember) -> int:
        if member.job_id is None or member.submit_error is not None:
            return 0
        return self.orchestrator.get_status(member.job_id).progress

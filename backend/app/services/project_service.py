"""
Project Service - projects and their files across the database and the blob store

Every mutation that writes blobs is two-phase:
1. stage: upload the new blobs, in order, stopping at the first failure
2. commit: write the metadata rows in one transaction

If either phase fails the blobs staged so far are removed again, so a
project never points at a missing blob and a failed request leaves nothing
behind (except when that cleanup itself fails, which is logged).
"""

import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings, Settings
from app.core.database import get_db
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    FileTooLargeError,
    InvalidFileTypeError,
    ProjectFileNotFoundError,
    ProjectNotFoundError,
    UpstreamStorageError,
    ValidationError,
)
from app.core.logging_config import logger, set_project_id
from app.models.project import Project
from app.models.project_file import ProjectFile
from app.models.user import User
from app.schemas.project import ProjectUpdate
from app.services.storage_service import BlobStore, get_storage


@dataclass
class IncomingFile:
    """One uploaded file, already read into memory"""
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lower().lstrip(".")


@dataclass
class FileSubmission:
    file: IncomingFile
    title: str


def normalize_titles(raw: Union[None, str, Iterable[str]]) -> List[str]:
    """Titles arrive as nothing, one string, or a list depending on the client"""
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    return [t if isinstance(t, str) else str(t) for t in raw]


def validate_file(file: IncomingFile, config: Settings = settings) -> None:
    """Per-file checks shared by create, add and replace"""
    if not file.filename:
        raise ValidationError("Every file needs a filename", field="files")
    if file.size == 0:
        raise ValidationError(f"File '{file.filename}' is empty", field="files")
    if file.size > config.MAX_FILE_SIZE_BYTES:
        raise FileTooLargeError(file.filename, config.MAX_FILE_SIZE_MB)

    allowed = config.ALLOWED_EXTENSIONS
    if "*" not in allowed and file.extension not in allowed:
        raise InvalidFileTypeError(file.filename, allowed)


def pair_files_with_titles(
    files: Optional[Sequence[IncomingFile]],
    titles: Union[None, str, Iterable[str]],
    config: Settings = settings,
) -> List[FileSubmission]:
    """
    Turn the raw multipart shape into an ordered list of (file, title) pairs.

    Raises ValidationError before anything is written when the shape is
    wrong: no files, too many files, a title count that differs from the
    file count, a blank title, or a file that fails validate_file().
    """
    files = list(files or [])
    title_list = normalize_titles(titles)

    if not files:
        raise ValidationError("Please upload at least one file", field="files")
    if len(files) > config.MAX_FILES_PER_UPLOAD:
        raise ValidationError(
            f"Too many files: at most {config.MAX_FILES_PER_UPLOAD} per upload",
            field="files",
        )
    if len(title_list) != len(files):
        raise ValidationError(
            f"Number of titles ({len(title_list)}) does not match number of files ({len(files)})",
            field="titles",
        )

    submissions = []
    for file, title in zip(files, title_list):
        title = title.strip()
        if not title:
            raise ValidationError("Every file needs a title", field="titles")
        validate_file(file, config)
        submissions.append(FileSubmission(file=file, title=title))
    return submissions


class ProjectService:
    """Owner-checked project and file operations over one session and one blob store"""

    def __init__(self, db: AsyncSession, storage: BlobStore):
        self.db = db
        self.storage = storage

    # ========== Helpers ==========

    async def _get_project(self, project_id: str, load_files: bool = False) -> Project:
        query = select(Project).where(Project.id == project_id)
        if load_files:
            query = query.options(selectinload(Project.files))
        result = await self.db.execute(query)
        project = result.scalar_one_or_none()
        if not project:
            raise ProjectNotFoundError(project_id)
        return project

    async def _get_owned_project(self, project_id: str, user: User, load_files: bool = False) -> Project:
        project = await self._get_project(project_id, load_files)
        if project.user_id != user.id:
            logger.warning(f"[Projects] User {user.id} denied access to project {project_id}")
            raise AuthorizationError("Not authorized to modify this project")
        set_project_id(project.id)
        return project

    async def _get_owned_file(self, file_id: str, user: User) -> ProjectFile:
        result = await self.db.execute(
            select(ProjectFile).where(ProjectFile.id == file_id)
        )
        file_row = result.scalar_one_or_none()
        if not file_row:
            raise ProjectFileNotFoundError(file_id)
        if file_row.user_id != user.id:
            logger.warning(f"[Projects] User {user.id} denied access to file {file_id}")
            raise AuthorizationError("Not authorized to modify this file")
        set_project_id(file_row.project_id)
        return file_row

    async def _discard(self, keys: Sequence[str]) -> None:
        """Compensating delete for staged blobs"""
        if not keys:
            return
        removed = await self.storage.remove_many(keys)
        if removed < len(keys):
            logger.error(
                f"[Projects] Left {len(keys) - removed} orphaned blob(s) after a failed write",
                extra={"event_type": "orphaned_blobs", "storage_keys": list(keys)},
            )

    async def _stage(self, submissions: Sequence[FileSubmission]) -> List[str]:
        """Upload in order; on the first failure remove what was staged and re-raise"""
        staged: List[str] = []
        for submission in submissions:
            try:
                key = await self.storage.put(
                    submission.file.content,
                    submission.file.filename,
                    submission.file.content_type,
                )
            except UpstreamStorageError:
                logger.warning(
                    f"[Projects] Upload {len(staged) + 1}/{len(submissions)} failed, "
                    f"discarding {len(staged)} staged blob(s)"
                )
                await self._discard(staged)
                raise
            staged.append(key)
        return staged

    async def _commit_or_discard(self, keys: Sequence[str]) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await self._discard(keys)
            raise

    @staticmethod
    def _file_row(submission: FileSubmission, key: str, user: User, project_id: Optional[str] = None) -> ProjectFile:
        return ProjectFile(
            project_id=project_id,
            user_id=user.id,
            title=submission.title,
            original_name=submission.file.filename,
            storage_key=key,
            content_type=submission.file.content_type,
            size_bytes=submission.file.size,
        )

    # ========== Project Operations ==========

    async def create_project(
        self,
        user: User,
        name: Optional[str],
        description: Optional[str],
        files: Optional[Sequence[IncomingFile]],
        titles: Union[None, str, Iterable[str]],
    ) -> Project:
        """Create a project with its files; all of it exists afterwards or none of it does"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name is required", field="name")

        submissions = pair_files_with_titles(files, titles)
        keys = await self._stage(submissions)

        project = Project(
            name=name,
            description=description,
            user_id=user.id,
            roll_number=user.roll_number,
        )
        project.files = [self._file_row(s, k, user) for s, k in zip(submissions, keys)]
        self.db.add(project)

        await self._commit_or_discard(keys)
        await self.db.refresh(project)

        set_project_id(project.id)
        logger.info(f"[Projects] ✓ Created project {project.id} with {len(keys)} file(s)")
        return project

    async def add_files(
        self,
        user: User,
        project_id: str,
        files: Optional[Sequence[IncomingFile]],
        titles: Union[None, str, Iterable[str]],
    ) -> List[ProjectFile]:
        project = await self._get_owned_project(project_id, user)

        submissions = pair_files_with_titles(files, titles)
        keys = await self._stage(submissions)

        rows = [self._file_row(s, k, user, project.id) for s, k in zip(submissions, keys)]
        self.db.add_all(rows)

        await self._commit_or_discard(keys)
        for row in rows:
            await self.db.refresh(row)

        logger.info(f"[Projects] ✓ Added {len(rows)} file(s) to project {project.id}")
        return rows

    async def replace_file(
        self,
        user: User,
        file_id: str,
        title: Optional[str],
        file: Optional[IncomingFile],
        expected_version: Optional[int] = None,
    ) -> ProjectFile:
        """
        Swap the bytes behind a file record, keeping its id.

        The new blob is uploaded before the row changes and the old blob is
        removed only after the commit, so the row never points at a missing
        blob.
        """
        file_row = await self._get_owned_file(file_id, user)

        title = (title or "").strip()
        if not title:
            raise ValidationError("File title is required", field="fileName")
        if file is None:
            raise ValidationError("Please upload a replacement file", field="newFile")
        validate_file(file)

        if expected_version is not None and expected_version != file_row.version:
            raise ConflictError(
                "File was modified by another request. Reload and try again.",
                field="version",
            )

        new_key = await self.storage.put(file.content, file.filename, file.content_type)
        old_key = file_row.storage_key

        file_row.title = title
        file_row.original_name = file.filename
        file_row.storage_key = new_key
        file_row.content_type = file.content_type
        file_row.size_bytes = file.size

        try:
            await self._commit_or_discard([new_key])
        except StaleDataError:
            logger.warning(f"[Projects] Concurrent modification of file {file_id}")
            raise ConflictError(
                "File was modified by another request. Reload and try again.",
                field="version",
            )
        await self.db.refresh(file_row)

        if not await self.storage.remove(old_key):
            logger.warning(f"[Projects] Old blob {old_key} for file {file_id} was not removed")

        logger.info(f"[Projects] ✓ Replaced file {file_id} (version {file_row.version})")
        return file_row

    async def _commit_delete(self, what: str) -> None:
        """Commit a delete; a version mismatch on any file row becomes ConflictError"""
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning(f"[Projects] Concurrent modification while deleting {what}")
            raise ConflictError(
                "File was modified by another request. Reload and try again.",
                field="version",
            )

    async def delete_file(self, user: User, file_id: str) -> None:
        """Delete the row first; its blob goes only once the delete is committed"""
        file_row = await self._get_owned_file(file_id, user)
        key = file_row.storage_key

        await self.db.delete(file_row)
        await self._commit_delete(f"file {file_id}")

        if not await self.storage.remove(key):
            logger.warning(
                f"[Projects] Left orphaned blob {key} of deleted file {file_id}",
                extra={"event_type": "orphaned_blobs", "storage_keys": [key]},
            )
        logger.info(f"[Projects] ✓ Deleted file {file_id}")

    async def delete_project(self, user: User, project_id: str) -> None:
        """Delete the project row (file rows cascade), then its blobs best effort"""
        project = await self._get_owned_project(project_id, user, load_files=True)
        keys = [f.storage_key for f in project.files]

        await self.db.delete(project)
        await self._commit_delete(f"project {project_id}")

        removed = await self.storage.remove_many(keys)
        if removed < len(keys):
            logger.warning(
                f"[Projects] Left {len(keys) - removed} orphaned blob(s) of deleted project {project_id}",
                extra={"event_type": "orphaned_blobs", "storage_keys": keys},
            )
        logger.info(
            f"[Projects] ✓ Deleted project {project_id} "
            f"({len(keys)} file(s), {removed} blob(s) removed)"
        )

    async def update_project(self, user: User, project_id: str, data: ProjectUpdate) -> Project:
        project = await self._get_owned_project(project_id, user)

        if data.name and data.name.strip():
            project.name = data.name.strip()
        if "description" in data.model_fields_set:
            project.description = data.description

        await self.db.commit()
        await self.db.refresh(project)
        return project

    # ========== Public reads ==========

    async def list_by_roll_number(self, roll_number: str) -> List[Project]:
        """Newest first; empty list when the roll number owns nothing"""
        result = await self.db.execute(
            select(Project)
            .where(Project.roll_number == roll_number)
            .order_by(Project.created_at.desc(), Project.id)
        )
        return list(result.scalars().all())

    async def get_detail(self, project_id: str) -> Tuple[Project, List[ProjectFile]]:
        """Project plus its files, oldest first"""
        project = await self._get_project(project_id)
        result = await self.db.execute(
            select(ProjectFile)
            .where(ProjectFile.project_id == project.id)
            .order_by(ProjectFile.created_at.asc(), ProjectFile.id)
        )
        return project, list(result.scalars().all())


async def reconcile_roll_numbers(db: AsyncSession) -> int:
    """Re-stamp projects whose roll number drifted from their owner's; returns the count"""
    result = await db.execute(
        select(Project, User.roll_number)
        .join(User, Project.user_id == User.id)
        .where(Project.roll_number != User.roll_number)
    )
    rows = result.all()

    for project, roll_number in rows:
        logger.info(f"[Reconcile] Project {project.id}: {project.roll_number} -> {roll_number}")
        project.roll_number = roll_number

    if rows:
        await db.commit()
    return len(rows)


def get_project_service(
    db: AsyncSession = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
) -> ProjectService:
    return ProjectService(db, storage)

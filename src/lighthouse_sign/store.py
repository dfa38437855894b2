"""Filesystem-backed document store for templates, agreements and mail.

Every record is a JSON document under one root directory, one
collection per subdirectory::

    ~/.lighthouse-sign/
    ├── templates/          # <template-id>.json
    ├── agreements/
    │   └── <agreement-id>/
    │       ├── agreement.json
    │       └── signed.pdf  (after export)
    ├── tokens/             # sha256(token) -> agreement id
    └── mail/               # outbound queue, one <message-id>.json each

Agreement updates go through :meth:`AgreementStore.update`, a per-document
read-modify-write guarded by a lock and a ``revision`` compare-and-set.
Subscribers registered with :meth:`AgreementStore.subscribe` receive a
fresh tenant snapshot after every agreement write.
"""

import hashlib
import json
import logging
import os
import shutil
import threading
import time
import weakref
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

from .errors import (
    AgreementNotFoundError,
    ConcurrentModificationError,
    PersistenceError,
    TemplateNotFoundError,
)
from .models import Agreement, MailMessage
from .models_template import Template

logger = logging.getLogger("lighthouse_sign.store")

DEFAULT_DATA_DIR = Path.home() / ".lighthouse-sign"

# A lock file older than this is left over from a crashed writer.
STALE_LOCK_SECONDS = 30.0

Snapshot = list[Agreement]
Listener = Callable[[Snapshot], None]
Mutation = Callable[[Agreement], Optional[Agreement]]


def _token_key(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class _Subscription:
    def __init__(self, tenant_id: str, callback: Listener, limit: int) -> None:
        self.tenant_id = tenant_id
        self.callback = callback
        self.limit = limit


class AgreementStore:
    """CRUD and atomic updates for templates, agreements and queued mail.

    Args:
        base_dir: Root directory for all data.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.base = Path(base_dir) if base_dir else DEFAULT_DATA_DIR
        self._templates_dir = self.base / "templates"
        self._agreements_dir = self.base / "agreements"
        self._tokens_dir = self.base / "tokens"
        self._mail_dir = self.base / "mail"

        for d in (
            self._templates_dir,
            self._agreements_dir,
            self._tokens_dir,
            self._mail_dir,
        ):
            d.mkdir(parents=True, exist_ok=True)

        # Entries vanish once no caller holds the lock.
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()
        self._subscriptions: list[_Subscription] = []

    # ------------------------------------------------------------------
    # Low-level IO
    # ------------------------------------------------------------------

    @staticmethod
    def _write_bytes(path: Path, data: bytes) -> None:
        """Write via a temp file and rename so readers never see half a file."""
        tmp = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Could not write {path.name}: {exc}") from exc

    @classmethod
    def _write_text(cls, path: Path, text: str) -> None:
        cls._write_bytes(path, text.encode("utf-8"))

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Could not read {path.name}: {exc}") from exc

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def save_template(self, template: Template) -> Path:
        """Save a template to disk.

        Returns:
            Path to the saved JSON file.
        """
        path = self._templates_dir / f"{template.id}.json"
        self._write_text(path, template.model_dump_json(indent=2, by_alias=True))
        logger.info("Saved template %s (%s)", template.name, template.id[:8])
        return path

    def load_template(self, template_id: str) -> Template:
        """Load a template by ID.

        Raises:
            TemplateNotFoundError: If the template doesn't exist.
        """
        path = self._templates_dir / f"{template_id}.json"
        if not path.exists():
            raise TemplateNotFoundError(template_id)
        return Template.model_validate_json(self._read_text(path))

    def list_templates(
        self,
        tenant_id: Optional[str] = None,
        sendable_only: bool = False,
    ) -> list[Template]:
        """List templates, newest first.

        Args:
            tenant_id: Only this tenant's templates (None = all).
            sendable_only: Only active document templates.
        """
        templates = []
        for f in self._templates_dir.glob("*.json"):
            try:
                t = Template.model_validate_json(f.read_text(encoding="utf-8"))
            except Exception as exc:
                logger.warning("Skipping invalid template %s: %s", f.name, exc)
                continue
            if tenant_id is not None and t.tenant_id != tenant_id:
                continue
            if sendable_only and not t.is_sendable:
                continue
            templates.append(t)
        templates.sort(key=lambda t: t.created_at, reverse=True)
        return templates

    # ------------------------------------------------------------------
    # Agreements
    # ------------------------------------------------------------------

    def _agreement_path(self, agreement_id: str) -> Path:
        return self._agreements_dir / agreement_id / "agreement.json"

    def create_agreement(self, agreement: Agreement) -> Agreement:
        """Persist a new agreement and index its signer tokens.

        Raises:
            PersistenceError: If an agreement with this id already exists
                or the write fails.
        """
        doc_dir = self._agreements_dir / agreement.id
        try:
            doc_dir.mkdir(parents=True, exist_ok=False)
        except FileExistsError as exc:
            raise PersistenceError(f"Agreement {agreement.id} already exists") from exc

        # The agreement becomes visible only once every link resolves.
        index = [self._tokens_dir / _token_key(t) for t in agreement.signer_tokens]
        try:
            for path in index:
                self._write_text(path, agreement.id)
            self._write_text(
                self._agreement_path(agreement.id),
                agreement.model_dump_json(indent=2, by_alias=True),
            )
        except PersistenceError:
            for path in index:
                path.unlink(missing_ok=True)
            shutil.rmtree(doc_dir, ignore_errors=True)
            logger.warning("Rolled back partially written agreement %s", agreement.id[:8])
            raise

        logger.info(
            "Created agreement %s (%s) for tenant %s",
            agreement.document_title,
            agreement.id[:8],
            agreement.tenant_id,
        )
        self._notify(agreement.tenant_id)
        return agreement

    def load_agreement(self, agreement_id: str) -> Agreement:
        """Load an agreement by ID.

        Raises:
            AgreementNotFoundError: If the agreement doesn't exist.
        """
        path = self._agreement_path(agreement_id)
        if not path.exists():
            raise AgreementNotFoundError(agreement_id)
        return Agreement.model_validate_json(self._read_text(path))

    def find_by_token(self, token: str) -> Agreement:
        """Resolve a signing-link token to its agreement through the index.

        Raises:
            AgreementNotFoundError: If no agreement carries the token.
        """
        index = self._tokens_dir / _token_key(token)
        if not index.exists():
            raise AgreementNotFoundError("signing link")
        agreement = self.load_agreement(self._read_text(index).strip())
        if agreement.signer_by_token(token) is None:
            raise AgreementNotFoundError("signing link")
        return agreement

    def list_agreements(
        self,
        tenant_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Agreement]:
        """List agreements ordered by ``sent_at``, newest first.

        Args:
            tenant_id: Only this tenant's agreements (None = all).
            limit: Return at most this many.
        """
        agreements = []
        for doc_dir in self._agreements_dir.iterdir():
            json_path = doc_dir / "agreement.json"
            if not json_path.exists():
                continue
            try:
                a = Agreement.model_validate_json(json_path.read_text(encoding="utf-8"))
            except Exception as exc:
                logger.warning("Skipping invalid agreement %s: %s", doc_dir.name, exc)
                continue
            if tenant_id is None or a.tenant_id == tenant_id:
                agreements.append(a)
        agreements.sort(key=lambda a: a.sent_at, reverse=True)
        return agreements[:limit] if limit is not None else agreements

    def update(self, agreement_id: str, mutate: Mutation) -> Agreement:
        """Atomically read, transform and write one agreement.

        ``mutate`` receives the current stored agreement and returns the
        replacement, or None (or the same object) to write nothing. Any
        exception it raises propagates and nothing is written.

        Returns:
            The stored agreement after the update.

        Raises:
            AgreementNotFoundError: If the agreement doesn't exist.
            ConcurrentModificationError: If another writer holds the
                document or changed it in the meantime.
            PersistenceError: If the write fails.
        """
        with self._lock_for(agreement_id):
            with self._file_lock(agreement_id):
                current = self.load_agreement(agreement_id)
                updated = mutate(current)
                if updated is None or updated is current:
                    return current

                on_disk = self.load_agreement(agreement_id)
                if on_disk.revision != current.revision:
                    raise ConcurrentModificationError(agreement_id)

                updated.revision = current.revision + 1
                self._write_text(
                    self._agreement_path(agreement_id),
                    updated.model_dump_json(indent=2, by_alias=True),
                )

        logger.info(
            "Updated agreement %s to revision %d (%s)",
            agreement_id[:8],
            updated.revision,
            updated.status.value,
        )
        self._notify(updated.tenant_id)
        return updated

    def _lock_for(self, agreement_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(agreement_id)
            if lock is None:
                lock = self._locks[agreement_id] = threading.Lock()
            return lock

    def _file_lock(self, agreement_id: str) -> "_LockFile":
        return _LockFile(self._agreements_dir / agreement_id / ".lock", agreement_id)

    # ------------------------------------------------------------------
    # Exported PDFs
    # ------------------------------------------------------------------

    def save_pdf(self, agreement_id: str, pdf_data: bytes) -> Path:
        """Store the rendered PDF next to the agreement."""
        path = self._agreements_dir / agreement_id / "signed.pdf"
        if not path.parent.exists():
            raise AgreementNotFoundError(agreement_id)
        self._write_bytes(path, pdf_data)
        return path

    def get_pdf(self, agreement_id: str) -> Optional[bytes]:
        """Read the exported PDF, or None if none has been generated."""
        path = self._agreements_dir / agreement_id / "signed.pdf"
        if path.exists():
            return path.read_bytes()
        return None

    # ------------------------------------------------------------------
    # Outbound mail queue
    # ------------------------------------------------------------------

    def enqueue_mail(self, message: MailMessage) -> Path:
        """Append a message to the outbound mail collection.

        Raises:
            PersistenceError: If the write fails.
        """
        path = self._mail_dir / f"{message.id}.json"
        self._write_text(path, message.model_dump_json(indent=2, by_alias=True))
        logger.info("Queued mail %s for agreement %s", message.id[:8], (message.agreement_id or "-")[:8])
        return path

    def list_mail(self) -> list[MailMessage]:
        """Queued messages, oldest first."""
        messages = []
        for f in self._mail_dir.glob("*.json"):
            try:
                messages.append(MailMessage.model_validate_json(f.read_text(encoding="utf-8")))
            except Exception as exc:
                logger.warning("Skipping invalid mail %s: %s", f.name, exc)
        messages.sort(key=lambda m: m.created_at)
        return messages

    # ------------------------------------------------------------------
    # Live subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        tenant_id: str,
        callback: Listener,
        limit: int = 50,
    ) -> Callable[[], None]:
        """Push the tenant's agreement snapshot now and after every write.

        Args:
            tenant_id: Tenant whose agreements to watch.
            callback: Called with the snapshot (newest ``sent_at`` first).
            limit: Snapshot size.

        Returns:
            A function that cancels the subscription.
        """
        sub = _Subscription(tenant_id, callback, limit)
        self._subscriptions.append(sub)
        self._deliver(sub)

        def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    def _notify(self, tenant_id: str) -> None:
        for sub in list(self._subscriptions):
            if sub.tenant_id == tenant_id:
                self._deliver(sub)

    def _deliver(self, sub: _Subscription) -> None:
        snapshot = self.list_agreements(tenant_id=sub.tenant_id, limit=sub.limit)
        try:
            sub.callback(snapshot)
        except Exception:
            logger.exception("Agreement listener for tenant %s failed", sub.tenant_id)


class _LockFile:
    """Exclusive lock file guarding one agreement across processes."""

    def __init__(self, path: Path, agreement_id: str) -> None:
        self.path = path
        self.agreement_id = agreement_id

    def __enter__(self) -> "_LockFile":
        if not self.path.parent.exists():
            raise AgreementNotFoundError(self.agreement_id)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            if not self._break_stale():
                raise ConcurrentModificationError(self.agreement_id)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        os.close(fd)
        return self

    def __exit__(self, *exc_info) -> None:
        self.path.unlink(missing_ok=True)

    def _break_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        if age < STALE_LOCK_SECONDS:
            return False
        logger.warning("Removing stale lock on agreement %s", self.agreement_id[:8])
        self.path.unlink(missing_ok=True)
        return True

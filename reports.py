"""
Report submission and listing.
"""
import logging
from typing import Callable, Dict, List, Optional

from bson import ObjectId
from fastapi import UploadFile
from pymongo import DESCENDING

from database import DocumentStore
from errors import PersistenceError, ValidationError
from schemas import Report, ReportForm, ReportOut, User
from uploads import UploadStorage, has_file

logger = logging.getLogger(__name__)

REPORTS = Report.collection_name()
USERS = User.collection_name()

# Newest first; ids break ties between reports created in the same millisecond
NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]


class ReportService:
    def __init__(self, store: DocumentStore, uploads: UploadStorage):
        self.store = store
        self.uploads = uploads

    def create_report(
        self,
        user: User,
        form: ReportForm,
        photo: Optional[UploadFile],
        photo_url_for: Callable[[str], str],
    ) -> ReportOut:
        title = (form.title or "").strip()
        if not title:
            raise ValidationError("Title required")

        filename = self.uploads.save(photo) if has_file(photo) else None

        report = Report(
            user=user.id,
            title=title,
            description=form.description,
            latitude=form.latitude,
            longitude=form.longitude,
            address=form.address,
            photoUrl=photo_url_for(filename) if filename else None,
        )
        try:
            report.id = self.store.create_document(REPORTS, report.to_document())
        except PersistenceError:
            if filename:
                self.uploads.discard(filename)
            raise

        logger.info(f"Report {report.id} created by user {user.id} (photo: {bool(filename)})")
        return ReportOut.from_report(report, user)

    def _owners(self, reports: List[Report]) -> Dict[ObjectId, User]:
        owner_ids = list({r.user for r in reports})
        if not owner_ids:
            return {}
        documents = self.store.get_documents(USERS, {"_id": {"$in": owner_ids}})
        return {d["_id"]: User.from_document(d) for d in documents}

    def list_all(self) -> List[ReportOut]:
        reports = [Report.from_document(d) for d in self.store.get_documents(REPORTS, {}, NEWEST_FIRST)]
        owners = self._owners(reports)
        missing = {r.user for r in reports} - owners.keys()
        if missing:
            logger.warning(f"{len(missing)} report owner(s) could not be resolved")
        return [ReportOut.from_report(r, owners.get(r.user)) for r in reports]

    def list_mine(self, user: User) -> List[ReportOut]:
        documents = self.store.get_documents(REPORTS, {"user": user.id}, NEWEST_FIRST)
        return [ReportOut.from_report(Report.from_document(d), user) for d in documents]

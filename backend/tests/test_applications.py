import asyncio
import json
import re

import httpx

from recdocs.config import settings
from recdocs.main import app
from recdocs.services.archive_service import extract_archive
from recdocs.services.document_cache import DocumentCache
from recdocs.services.local_store import MemoryLocalStore
from recdocs.services.prefetch_service import DocumentPrefetcher, HttpMetadataSource
from recdocs.utils.hashing import content_hash

TITLES = {
    "application_form": "Application Form",
    "cv": "Curriculum Vitae",
    "consent": "Informed Consent",
}


def _protocol_files(consent=b"%PDF-1.4 informed consent"):
    return [
        ("application_form", ("form.pdf", b"%PDF-1.4 application form", "application/pdf")),
        ("cv", ("cv.docx", b"PK word document", "application/vnd.openxmlformats-officedocument.wordprocessingml.document")),
        ("consent", ("consent.pdf", consent, "application/pdf")),
    ]


class TestApplications:
    def _create(self, client, code="REC2026ABC123"):
        r = client.post("/api/applications", json={
            "title": "Community Health Survey",
            "code": code,
            "proponent_name": "Dr. Santos",
        })
        assert r.status_code == 201
        return r.json()["code"]

    def _submit(self, client, code, files=None, titles=TITLES):
        return client.post(
            f"/api/applications/{code}/submission",
            files=files or _protocol_files(),
            data={"titles": json.dumps(titles)},
        )

    def _documents(self, client, code):
        r = client.get(f"/api/applications/{code}/documents")
        assert r.status_code == 200
        return {d["field_key"]: d for d in r.json()}

    def test_create_application(self, client):
        r = client.post("/api/applications", json={"title": "Community Health Survey", "code": "REC2026ABC123"})
        assert r.status_code == 201
        data = r.json()
        assert data["code"] == "REC2026ABC123"
        assert data["zip_hash"] is None

        r = client.get("/api/applications/REC2026ABC123")
        assert r.status_code == 200
        assert r.json()["title"] == "Community Health Survey"

    def test_generated_code(self, client):
        r = client.post("/api/applications", json={"title": "Study"})
        assert r.status_code == 201
        assert re.fullmatch(r"REC\d{4}[A-Z0-9]{6}", r.json()["code"])

    def test_invalid_code(self, client):
        r = client.post("/api/applications", json={"title": "Study", "code": "../etc"})
        assert r.status_code == 400
        assert r.json() == {"error": "Invalid application code"}

    def test_duplicate_code(self, client):
        self._create(client)
        r = client.post("/api/applications", json={"title": "Again", "code": "REC2026ABC123"})
        assert r.status_code == 409

    def test_unknown_application(self, client):
        r = client.get("/api/applications/REC2026ZZZZZZ")
        assert r.status_code == 404
        assert r.json() == {"error": "Application not found"}

    def test_submit_three_documents(self, client, blob_store):
        code = self._create(client)

        r = self._submit(client, code)
        assert r.status_code == 201
        data = r.json()
        assert [f["zipFileName"] for f in data["files"]] == [
            "Application_Form.pdf",
            "Curriculum_Vitae.docx",
            "Informed_Consent.pdf",
        ]
        assert data["files"][2] == {
            "key": "consent",
            "title": "Informed Consent",
            "originalFileName": "consent.pdf",
            "zipFileName": "Informed_Consent.pdf",
        }
        assert data["storage_path"] == f"applications/{code}/documents/{data['zip_hash']}.zip"
        stored = blob_store.download(data["storage_path"])
        assert content_hash(stored) == data["zip_hash"]
        assert data["zip_size_bytes"] == len(stored)

        meta = data["documents_meta"]
        assert meta["zipHash"] == data["zip_hash"]
        assert [e["fileName"] for e in meta["fileManifest"]] == [
            "Application_Form.pdf",
            "Curriculum_Vitae.docx",
            "Informed_Consent.pdf",
        ]

        docs = self._documents(client, code)
        assert {d["status"] for d in docs.values()} == {"submitted"}
        assert {d["version"] for d in docs.values()} == {1}
        assert docs["cv"]["file_name"] == "Curriculum_Vitae.docx"
        assert docs["cv"]["original_file_name"] == "cv.docx"

    def test_documents_meta(self, client):
        code = self._create(client)
        submitted = self._submit(client, code).json()

        r = client.get(f"/api/applications/{code}/documents-meta")
        assert r.status_code == 200
        meta = r.json()
        assert meta["zipHash"] == submitted["zip_hash"]
        assert isinstance(meta["zipLastModified"], int)
        assert meta["fileManifest"][0] == {
            "fileName": "Application_Form.pdf",
            "originalTitle": "Application Form",
            "size": len(b"%PDF-1.4 application form"),
            "type": "application/pdf",
            "uploadedAt": meta["zipLastModified"],
        }

    def test_download_url_serves_the_archive(self, client):
        code = self._create(client)
        self._submit(client, code)
        meta = client.get(f"/api/applications/{code}/documents-meta").json()

        r = client.get(meta["zipDownloadUrl"])
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/zip"
        assert content_hash(r.content) == meta["zipHash"]

    def test_meta_before_submission(self, client):
        code = self._create(client)
        r = client.get(f"/api/applications/{code}/documents-meta")
        assert r.status_code == 404
        assert r.json() == {"error": "No zip metadata found"}

    def test_multiple_files_per_field_rejected(self, client, blob_store):
        code = self._create(client)
        files = _protocol_files() + [("consent", ("consent-2.pdf", b"%PDF second", "application/pdf"))]

        r = self._submit(client, code, files=files)
        assert r.status_code == 400
        assert r.json() == {
            "error": "Field 'Informed Consent' has more than one file. Only one file per field is allowed."
        }
        assert not blob_store.root.exists() or not any(blob_store.root.rglob("*.zip"))
        assert client.get(f"/api/applications/{code}/documents-meta").status_code == 404
        assert self._documents(client, code) == {}

    def test_empty_file_rejected(self, client):
        code = self._create(client)
        r = self._submit(client, code, files=[("consent", ("consent.pdf", b"", "application/pdf"))])
        assert r.status_code == 400
        assert r.json() == {"error": "Empty file for field 'consent'"}

    def test_no_files(self, client):
        code = self._create(client)
        r = client.post(f"/api/applications/{code}/submission", data={"titles": "{}"})
        assert r.status_code == 400
        assert r.json() == {"error": "No files submitted"}

    def test_bad_titles(self, client):
        code = self._create(client)
        r = client.post(
            f"/api/applications/{code}/submission",
            files=_protocol_files(),
            data={"titles": "[1, 2]"},
        )
        assert r.status_code == 400
        assert r.json() == {"error": "titles must be a JSON object"}

    def test_identical_resubmission_changes_nothing(self, client):
        code = self._create(client)
        first = self._submit(client, code).json()
        second = self._submit(client, code).json()

        assert second["zip_hash"] == first["zip_hash"]
        docs = self._documents(client, code)
        assert {d["status"] for d in docs.values()} == {"submitted"}
        assert {d["version"] for d in docs.values()} == {1}

    def test_changed_document_becomes_revision(self, client, blob_store):
        code = self._create(client)
        first = self._submit(client, code).json()
        second = self._submit(client, code, files=_protocol_files(consent=b"%PDF-1.4 consent v2")).json()

        assert second["zip_hash"] != first["zip_hash"]
        docs = self._documents(client, code)
        assert docs["consent"]["status"] == "revision_submitted"
        assert docs["consent"]["version"] == 2
        assert docs["cv"]["status"] == "submitted"
        assert docs["cv"]["version"] == 1

        meta = client.get(f"/api/applications/{code}/documents-meta").json()
        assert meta["zipHash"] == second["zip_hash"]
        assert blob_store.exists(first["storage_path"])
        assert blob_store.exists(second["storage_path"])

    def test_requested_document_is_submitted(self, client):
        code = self._create(client)
        r = client.post(f"/api/applications/{code}/documents/requests", json={
            "field_key": "ethics_clearance",
            "title": "Ethics Clearance",
            "request_reason": "Required for community studies",
        })
        assert r.status_code == 201
        assert r.json()["status"] == "pending"

        r = self._submit(
            client,
            code,
            files=[("ethics_clearance", ("clearance.pdf", b"%PDF clearance", "application/pdf"))],
            titles={"ethics_clearance": "Ethics Clearance"},
        )
        assert r.status_code == 201
        doc = self._documents(client, code)["ethics_clearance"]
        assert doc["status"] == "submitted"
        assert doc["version"] == 1
        assert doc["file_name"] == "Ethics_Clearance.pdf"
        assert doc["request_reason"] == "Required for community studies"

    def test_duplicate_request_rejected(self, client):
        code = self._create(client)
        self._submit(client, code)
        r = client.post(f"/api/applications/{code}/documents/requests", json={
            "field_key": "consent",
            "title": "Informed Consent",
        })
        assert r.status_code == 409

    def test_status_review(self, client):
        code = self._create(client)
        self._submit(client, code)
        doc_id = self._documents(client, code)["consent"]["id"]

        r = client.put(f"/api/applications/{code}/documents/{doc_id}/status", json={"status": "accepted"})
        assert r.status_code == 200
        assert r.json()["status"] == "accepted"

        r = client.put(f"/api/applications/{code}/documents/{doc_id}/status", json={"status": "submitted"})
        assert r.status_code == 409
        assert r.json() == {"error": "Cannot change document status from 'accepted' to 'submitted'"}

    def test_unknown_status_rejected(self, client):
        code = self._create(client)
        self._submit(client, code)
        doc_id = self._documents(client, code)["consent"]["id"]
        r = client.put(f"/api/applications/{code}/documents/{doc_id}/status", json={"status": "archived"})
        assert r.status_code == 422

    def test_unknown_document(self, client):
        code = self._create(client)
        r = client.put(f"/api/applications/{code}/documents/nope/status", json={"status": "accepted"})
        assert r.status_code == 404
        assert r.json() == {"error": "Document not found"}

    def test_resubmitting_accepted_document_conflicts(self, client, blob_store):
        code = self._create(client)
        first = self._submit(client, code).json()
        doc_id = self._documents(client, code)["consent"]["id"]
        client.put(f"/api/applications/{code}/documents/{doc_id}/status", json={"status": "accepted"})

        r = self._submit(client, code, files=_protocol_files(consent=b"%PDF-1.4 consent v2"))
        assert r.status_code == 409
        assert r.json() == {"error": "Cannot change document status from 'accepted' to 'revision_submitted'"}
        assert [p.name for p in blob_store.root.rglob("*.zip")] == [f"{first['zip_hash']}.zip"]
        meta = client.get(f"/api/applications/{code}/documents-meta").json()
        assert meta["zipHash"] == first["zip_hash"]

    def test_partial_submission_keeps_other_documents(self, client, blob_store):
        code = self._create(client)
        self._submit(client, code, files=_protocol_files()[:2])
        first_meta = client.get(f"/api/applications/{code}/documents-meta").json()

        r = self._submit(
            client,
            code,
            files=[("application_form", ("form-v2.pdf", b"%PDF-1.4 application form v2", "application/pdf"))],
        )
        assert r.status_code == 201
        data = r.json()
        assert [f["zipFileName"] for f in data["files"]] == ["Application_Form.pdf", "Curriculum_Vitae.docx"]
        assert data["files"][1]["originalFileName"] == "cv.docx"

        meta = client.get(f"/api/applications/{code}/documents-meta").json()
        assert meta["zipHash"] == data["zip_hash"]
        assert [e["fileName"] for e in meta["fileManifest"]] == ["Application_Form.pdf", "Curriculum_Vitae.docx"]
        assert meta["fileManifest"][1] == first_meta["fileManifest"][1]

        files = extract_archive(blob_store.download(data["storage_path"]))
        assert files == {
            "Application_Form.pdf": b"%PDF-1.4 application form v2",
            "Curriculum_Vitae.docx": b"PK word document",
        }

        docs = self._documents(client, code)
        assert docs["application_form"]["status"] == "revision_submitted"
        assert docs["application_form"]["version"] == 2
        assert docs["cv"]["status"] == "submitted"
        assert docs["cv"]["version"] == 1
        assert docs["cv"]["file_name"] == "Curriculum_Vitae.docx"

    def test_requested_document_joins_current_archive(self, client):
        code = self._create(client)
        self._submit(client, code)
        client.post(f"/api/applications/{code}/documents/requests", json={
            "field_key": "ethics_clearance",
            "title": "Ethics Clearance",
        })

        r = self._submit(
            client,
            code,
            files=[("ethics_clearance", ("clearance.pdf", b"%PDF clearance", "application/pdf"))],
            titles={"ethics_clearance": "Ethics Clearance"},
        )
        assert r.status_code == 201
        meta = client.get(f"/api/applications/{code}/documents-meta").json()
        assert [e["fileName"] for e in meta["fileManifest"]] == [
            "Ethics_Clearance.pdf",
            "Application_Form.pdf",
            "Curriculum_Vitae.docx",
            "Informed_Consent.pdf",
        ]
        docs = self._documents(client, code)
        assert {k: d["status"] for k, d in docs.items()} == {
            "application_form": "submitted",
            "consent": "submitted",
            "cv": "submitted",
            "ethics_clearance": "submitted",
        }

    def test_new_entry_does_not_take_an_existing_name(self, client):
        code = self._create(client)
        self._submit(client, code, files=_protocol_files()[1:2])

        r = self._submit(
            client,
            code,
            files=[("cv_translation", ("cv-en.docx", b"PK translated", "application/msword"))],
            titles={"cv_translation": "Curriculum Vitae"},
        )
        assert r.status_code == 201
        names = {f["key"]: f["zipFileName"] for f in r.json()["files"]}
        assert names == {"cv_translation": "Curriculum_Vitae_2.docx", "cv": "Curriculum_Vitae.docx"}


class TestReaderFlow:
    def test_reader_caches_submitted_documents(self, client):
        r = client.post("/api/applications", json={"title": "Study", "code": "REC2026ABC123"})
        code = r.json()["code"]
        r = client.post(
            f"/api/applications/{code}/submission",
            files=_protocol_files(),
            data={"titles": json.dumps(TITLES)},
        )
        zip_hash = r.json()["zip_hash"]

        async def scenario():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as reader:
                prefetcher = DocumentPrefetcher(
                    HttpMetadataSource(reader), DocumentCache(MemoryLocalStore()), reader
                )
                files = await prefetcher.ensure(code)
                cached = await prefetcher.cache.get(code, zip_hash)
                return files, cached

        files, cached = asyncio.run(scenario())
        assert files == {
            "Application_Form.pdf": b"%PDF-1.4 application form",
            "Curriculum_Vitae.docx": b"PK word document",
            "Informed_Consent.pdf": b"%PDF-1.4 informed consent",
        }
        assert cached == files

    def test_reader_sees_documents_left_out_of_a_resubmission(self, client):
        client.post("/api/applications", json={"title": "Study", "code": "REC2026ABC123"})
        client.post(
            "/api/applications/REC2026ABC123/submission",
            files=_protocol_files()[:2],
            data={"titles": json.dumps(TITLES)},
        )
        client.post(
            "/api/applications/REC2026ABC123/submission",
            files=[("application_form", ("form-v2.pdf", b"%PDF-1.4 application form v2", "application/pdf"))],
            data={"titles": json.dumps(TITLES)},
        )

        async def scenario():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as reader:
                prefetcher = DocumentPrefetcher(
                    HttpMetadataSource(reader), DocumentCache(MemoryLocalStore()), reader
                )
                return await prefetcher.get_file("REC2026ABC123", "Curriculum_Vitae.docx")

        assert asyncio.run(scenario()) == b"PK word document"


class TestUploadLimits:
    def test_oversized_file_rejected(self, client, blob_store, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 16)
        client.post("/api/applications", json={"title": "Study", "code": "REC2026ABC123"})

        r = client.post(
            "/api/applications/REC2026ABC123/submission",
            files=[("consent", ("consent.pdf", b"%PDF" + b"x" * 64, "application/pdf"))],
        )
        assert r.status_code == 413
        assert r.json() == {"error": "File for field 'consent' is too large (max 16 bytes)"}
        assert not blob_store.root.exists()

"""
Access Applications Module

Handles the controlled data access application lifecycle:
1. Submitters draft an application section by section
2. The signed application is submitted for review
3. Reviewers approve, reject or request revisions
4. Approved access must be attested yearly and expires after the access period
5. Approved applications can be renewed near expiry

API Endpoints:
- POST /applications - Create a DRAFT application
- GET /applications - Search applications
- GET /applications/{app_id} - Get an application
- PATCH /applications/{app_id} - Update, change state, attest or renew
- /applications/{app_id}/collaborators - Manage collaborators
- /applications/{app_id}/assets/{doc_type} - Upload, remove and download documents
- POST /admin/jobs/batch-transitions - Run the batch checks now
- GET /admin/jobs - List the scheduled jobs

Background Jobs (via APScheduler):
- access_applications_batch_transitions: Runs daily; sends attestation and
  expiry notices, pauses unattested access, expires access and closes
  abandoned renewals
"""


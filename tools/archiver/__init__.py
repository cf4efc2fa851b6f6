"""
4chan Archiver – continuously mirror boards into a local archive.

Supports:
  • Polling configured boards forever (threads.json → thread → posts)
  • Conditional thread fetches via If-Modified-Since
  • Per-board regex filters on the opening post
  • Storing attachments and thumbnails on disk or in MinIO/S3
  • Idempotent post upserts into PostgreSQL
"""

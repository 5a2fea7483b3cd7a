"""
AI scan classifier.

Watches per-tenant folders of an FTP drop box for new scans, extracts their
text with OCR, classifies them with a language model, files them into the
tenant's cloud storage and reports progress over Telegram.
"""

__version__ = "0.1.0"

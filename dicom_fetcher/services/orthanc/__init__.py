"""Orthanc REST client."""

from dicom_fetcher.services.orthanc.client import OrthancClient

__all__ = ["OrthancClient"]

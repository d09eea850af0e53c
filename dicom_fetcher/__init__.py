"""DICOM Fetcher - concurrent, cached preview fetching from an Orthanc PACS."""

__version__ = "0.1.0"

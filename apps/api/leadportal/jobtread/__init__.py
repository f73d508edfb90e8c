from leadportal.jobtread.client import JobTreadClient, JobTreadError, get_jobtread_client
from leadportal.jobtread.query import Field, dig, document, select

__all__ = [
    "Field",
    "JobTreadClient",
    "JobTreadError",
    "dig",
    "document",
    "get_jobtread_client",
    "select",
]

"""
Error taxonomy shared by the service layer and the API.

Concrete errors subclass these next to the code that raises them, so
callers can either catch the specific error or a whole category.
"""


class NotFound(Exception):
    pass


class Conflict(Exception):
    pass


class StorageError(Exception):
    pass


class UpstreamError(Exception):
    """
    The identity service could not be reached (or answered with a 5xx) while
    reading data needed before a local mutation. Nothing has been committed.
    """


class SyncError(Exception):
    """
    Pushing a committed local change to the identity service failed. The local
    change stands; the consolidation job heals the drift later.
    """

    def __init__(self, message: str, user_uuid=None, group_names=None):
        super().__init__(message)
        self.user_uuid = user_uuid
        self.group_names = list(group_names or [])


class TransferIncomplete(SyncError):
    """
    A transfer removed the group from the old user's profile but could not
    add it to the new user's profile.
    """

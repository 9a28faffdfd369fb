class CollaborationGraphError(Exception):
    """Base class for errors raised by the collaboration graph."""


class InvalidInputError(CollaborationGraphError):
    """A caller supplied an argument outside the accepted range."""


class PersonNotFoundError(CollaborationGraphError):
    def __init__(self, person_id: int):
        super().__init__(f"Unknown person id {person_id}")
        self.person_id = person_id


class WorkNotFoundError(InvalidInputError):
    def __init__(self, work_id: int):
        super().__init__(f"Unknown work id {work_id}")
        self.work_id = work_id


class AlreadyRunningError(CollaborationGraphError):
    """A single-flight batch job was started while another run holds its flag."""

    def __init__(self, job_name: str):
        super().__init__(f"Job '{job_name}' is already running")
        self.job_name = job_name

"""Typed failures raised by the contest services.

Each error carries the HTTP status the API answers with; the blueprint error
handler turns them into ``{'error': ..., 'code': ...}`` bodies.
"""


class ContestError(Exception):
    status_code = 400
    message = 'Request failed'

    def __init__(self, message=None, cause=None):
        super().__init__(message or self.message)
        self.cause = cause

    @property
    def code(self):
        return type(self).__name__

    def to_dict(self):
        return {'error': str(self), 'code': self.code}


class InvalidIdentifier(ContestError):
    status_code = 400
    message = 'Please enter your LAN ID'


class CompetitionNotFound(ContestError):
    status_code = 404
    message = 'Competition not found'


class CompetitionNotOngoing(ContestError):
    status_code = 403
    message = 'This competition is not accepting participants'


class NoQuestions(ContestError):
    status_code = 409
    message = 'No questions available for this competition'


class AlreadyUsed(ContestError):
    # Submitted and expired sessions read the same to the participant
    status_code = 409
    message = 'This LAN ID has already been used for this competition.'


class IncompleteSubmission(ContestError):
    status_code = 400
    message = 'Please upload both prompt and output files'

    def __init__(self, missing=(), message=None):
        super().__init__(message)
        self.missing = list(missing)

    def to_dict(self):
        body = super().to_dict()
        body['missing'] = self.missing
        return body


class StorageUnavailable(ContestError):
    status_code = 503
    message = 'Storage is unavailable, please try again'


class SubmissionFailed(ContestError):
    status_code = 503
    message = 'Failed to submit. Please try again.'

    def to_dict(self):
        body = super().to_dict()
        if self.cause is not None:
            body['cause'] = str(self.cause)
        return body

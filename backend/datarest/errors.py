class DatasetApiError(RuntimeError):
    """
    データセットAPIの例外の基底。
    - code/status_code を持たせ、API側で一貫したエラーレスポンス {"error": message} にマップする。
    """

    code: str = "DATASET_API_ERROR"
    status_code: int = 500

    def __init__(self, message: str = "Dataset API error", *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class Unauthenticated(DatasetApiError):
    code = "UNAUTHENTICATED"
    status_code = 401


class DatasetNotFound(DatasetApiError):
    code = "DATASET_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Dataset not found", **kwargs):
        super().__init__(message, **kwargs)


class RecordNotFound(DatasetApiError):
    code = "RECORD_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str = "Record not found", **kwargs):
        super().__init__(message, **kwargs)


class EmptyOrInvalidContent(DatasetApiError):
    code = "EMPTY_OR_INVALID_CONTENT"
    status_code = 400


class NoDataToAnalyze(DatasetApiError):
    code = "NO_DATA_TO_ANALYZE"
    status_code = 400

    def __init__(self, message: str = "No data to analyze", **kwargs):
        super().__init__(message, **kwargs)


class UnsupportedMethod(DatasetApiError):
    code = "UNSUPPORTED_METHOD"
    status_code = 405

    def __init__(self, message: str = "Method not allowed", **kwargs):
        super().__init__(message, **kwargs)


class InvalidRequestBody(DatasetApiError):
    code = "INVALID_REQUEST_BODY"
    status_code = 400


class VersionConflict(DatasetApiError):
    code = "VERSION_CONFLICT"
    status_code = 412


class StoreFailure(DatasetApiError):
    code = "STORE_FAILURE"
    status_code = 500


class IdentityProviderError(DatasetApiError):
    code = "IDENTITY_PROVIDER_ERROR"
    status_code = 500

class KnowledgeBaseValidationError(Exception):
    """知识库参数校验错误"""


class KnowledgeBaseExistsError(Exception):
    """知识库已存在且已绑定远端 ID"""


class KnowledgeBaseNotFoundError(Exception):
    """知识库不存在"""


class UploadedFileNotFoundError(Exception):
    """上传文件记录不存在"""


class UnsupportedModelOwnerError(Exception):
    """未知的 model_owner 或 purpose 组合"""


class ProviderNotImplementedError(Exception):
    """提供商暂未实现该功能（应返回 501 而非硬失败）"""

    def __init__(self, message: str = "This functionality is not yet implemented for the selected model."):
        super().__init__(message)
        self.message = message


class ProviderError(Exception):
    """
    上游提供商调用错误

    status_code 为上游返回的状态码；网络层失败时为 None，由路由层映射为 502。
    detail 仅用于日志，不直接暴露给客户端。
    """

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class FilePollTimeoutError(Exception):
    """等待上游文件处理完成超时"""

    def __init__(self, file_id: str, timeout: float):
        super().__init__(f"文件 {file_id} 在 {timeout:g} 秒内未处理完成")
        self.file_id = file_id
        self.timeout = timeout


class TokenBudgetExceededError(Exception):
    """消息 token 数超出所选档位的上限"""

    def __init__(self, token_count: int, limit: int):
        super().__init__(f"token count {token_count} exceeds the limit of {limit}")
        self.token_count = token_count
        self.limit = limit


class LocalStorageError(Exception):
    """本地文件存储错误"""


"""
应用配置管理

使用 pydantic-settings 实现类型安全的配置管理：
- 支持从环境变量读取配置
- 支持从 .env 文件读取配置
- 提供默认值，确保开发环境开箱即用

配置优先级（从高到低）：
    1. 环境变量
    2. .env 文件
    3. 代码中的默认值

Settings 在启动时构建一次，再显式传入各组件的构造函数
（ProviderClient、LocalFileStorage、FileIngestionWorkflow 等），
组件内部不直接读取环境变量。

使用示例：
    from app.config import get_settings
    settings = get_settings()
    print(settings.stepfun_api_base)
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    全局配置类

    所有配置项都可以通过环境变量覆盖，环境变量名与字段名相同（不区分大小写）。
    例如：STEPFUN_API_KEY 环境变量会覆盖 stepfun_api_key 字段。
    """

    # ==================== 应用基础配置 ====================
    app_name: str = "KB Gateway"             # 应用名称，显示在 API 文档中
    environment: str = "dev"                 # 运行环境：dev/staging/prod
    log_level: str = "INFO"                  # 日志级别：DEBUG/INFO/WARNING/ERROR
    log_json: bool | None = None             # 日志格式：True=JSON，None=自动（prod用JSON）
    timezone: str = "Asia/Shanghai"          # 时区设置，用于本地存储目录的日期
    api_prefix: str = "/api"                 # 所有业务接口的公共前缀

    # ==================== 数据库配置 ====================
    # 格式：postgresql+asyncpg://用户名:密码@主机:端口/数据库名
    # 测试环境可使用 sqlite+aiosqlite:///:memory:
    database_url: str = "postgresql+asyncpg://kb:kb@localhost:5432/kb_gateway"

    # ==================== CORS 配置 ====================
    # 逗号分隔的来源列表，"*" 表示允许所有来源
    allow_origins: str = "*"

    # ==================== JWT 会话配置 ====================
    jwt_secret: str = "change-me"            # HMAC 签名密钥，生产环境必须覆盖
    jwt_algorithm: str = "HS256"
    jwt_cookie_name: str = "jwtToken"        # 前端登录后写入的 Cookie 名
    jwt_username_claim: str = "userName"     # 存放用户名的 claim
    web_login_page: str | None = None        # 未登录时提示前端跳转的登录页

    # ==================== 模型提供商配置 ====================
    # 阶跃星辰 StepFun（对话、分词计数、文件、向量库）
    stepfun_api_key: str | None = None
    stepfun_api_base: str = "https://api.stepfun.com/v1"

    # OpenAI 兼容接口
    openai_api_key: str | None = None
    openai_api_base: str | None = None       # 如 https://api.openai.com/v1

    # Dify
    dify_api_key: str | None = None
    dify_api_base: str = "https://api.dify.ai/v1"

    provider_timeout: float = 120.0          # 单次上游请求超时（秒），流式转发不受整体限制

    # ==================== 文件存储配置 ====================
    file_path: str = "./uploads"             # 本地文件存储根目录
    file_web_host: str = ""                  # 对外访问文件的公共前缀，如 https://cdn.example.com/
    file_poll_timeout: float = 15.0          # 轮询上游文件处理状态的总时长（秒）
    file_poll_interval: float = 1.0          # 轮询间隔（秒）

    model_config = {
        "env_file": ".env",           # 从 .env 文件加载配置
        "env_file_encoding": "utf-8",  # .env 文件编码
        "extra": "ignore",
    }

    def get_allow_origins(self) -> list[str]:
        """解析 CORS 来源列表"""
        origins = [o.strip() for o in self.allow_origins.split(",") if o.strip()]
        return origins or ["*"]

    def get_provider_config(self, provider: str) -> dict:
        """根据提供商获取上游连接配置（api_key, base_url）"""
        provider = provider.lower()

        if provider == "stepfun":
            return {
                "provider": "stepfun",
                "api_key": self.stepfun_api_key,
                "base_url": self.stepfun_api_base,
            }
        elif provider in ("openai", "openai-compatible"):
            return {
                "provider": "openai",
                "api_key": self.openai_api_key,
                "base_url": self.openai_api_base,
            }
        elif provider == "dify":
            return {
                "provider": "dify",
                "api_key": self.dify_api_key,
                "base_url": self.dify_api_base,
            }
        else:
            raise ValueError(f"未知的模型提供商: {provider}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    获取配置单例

    使用 @lru_cache 缓存配置实例，整个应用只创建一次 Settings 对象。

    Returns:
        Settings: 全局配置实例
    """
    return Settings()

"""archpkg - 架构模型/元数据包管理器"""

__version__ = "0.1.0"

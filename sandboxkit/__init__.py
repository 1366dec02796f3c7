from .archs.sandbox import FileWriteRequest, SandboxSessionManager, SessionManagerConfig

__all__ = ["SandboxSessionManager", "SessionManagerConfig", "FileWriteRequest"]

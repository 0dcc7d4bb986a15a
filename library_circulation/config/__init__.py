from library_circulation.config.config import Config, TestingConfig

__all__ = ['Config', 'TestingConfig']

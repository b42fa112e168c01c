"""
数据库模块

- base.py    : SQLAlchemy 基类定义，所有 ORM 模型都继承自它
- session.py : 数据库会话管理（连接池、异步会话工厂）
- gateway.py : 持久化网关，封装知识库/文件/关联记录的增删改查与事务

生产环境使用 SQLAlchemy 2.0 + asyncpg，测试环境使用 aiosqlite。
"""

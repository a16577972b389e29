"""测试：BaseRepository 事务传播

业务背景：
- UseCase 通过 with_postgres_tx / with_timescale_tx 定义事务边界
- Repository 只通过 postgres_executor / timescale_executor 执行语句
- 嵌套的 Repository 调用（usecase → repository → sub-repository）共享同一个事务

测试策略：
1. PostgreSQL 用临时文件 SQLite 代替，TimescaleDB 用 aiosqlite 代替
2. 通过真实落库结果验证提交 / 回滚
"""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import create_async_engine

from txscope.application.ports.transaction_manager import TxRepository
from txscope.domain.value_objects.call_context import background
from txscope.infrastructure.database.repositories.base_repository import (
    POSTGRES_TX_KEY,
    TIMESCALE_TX_KEY,
    BaseRepository,
)
from txscope.infrastructure.database.transaction_manager import (
    AsyncSQLAlchemyTransaction,
    SQLAlchemyTransaction,
)

# ==================== 示例 Repository ====================


class AuditRepository(BaseRepository):
    """sub-repository：自己也声明事务边界，被嵌套调用时复用外层事务"""

    def append(self, ctx, message):
        return self.with_postgres_tx(
            ctx,
            lambda tx_ctx: self.postgres_executor(tx_ctx).execute(
                tx_ctx, "INSERT INTO audit (message) VALUES (:message)", {"message": message}
            ),
        )


class OrderRepository(BaseRepository):
    def __init__(self, postgres_engine, timescale_engine, audit: AuditRepository, **kwargs):
        super().__init__(postgres_engine, timescale_engine, **kwargs)
        self.audit = audit

    def add(self, ctx, order_id):
        def work(tx_ctx):
            self.postgres_executor(tx_ctx).execute(
                tx_ctx, "INSERT INTO orders (id) VALUES (:id)", {"id": order_id}
            )
            self.audit.append(tx_ctx, f"order {order_id} added")
            return self.get_postgres_tx(tx_ctx)[0]

        return self.with_postgres_tx(ctx, work)


class MetricsRepository(BaseRepository):
    async def record(self, ctx, ts, value):
        executor = self.timescale_executor(ctx)
        await executor.execute(
            ctx, "INSERT INTO points (ts, value) VALUES (:ts, :value)", {"ts": ts, "value": value}
        )


# ==================== Fixtures ====================


@pytest.fixture
def postgres_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'postgres.db'}")
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE orders (id INTEGER PRIMARY KEY)"))
        connection.execute(text("CREATE TABLE audit (message TEXT NOT NULL)"))

    yield engine

    engine.dispose()


@pytest.fixture
def timescale_engine(tmp_path):
    """异步引擎创建时不连接数据库，PostgreSQL 用例可以直接使用"""
    return create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'timescale.db'}")


@pytest.fixture
async def points_table(timescale_engine):
    async with timescale_engine.begin() as connection:
        await connection.execute(text("CREATE TABLE points (ts INTEGER, value REAL)"))

    yield

    await timescale_engine.dispose()


@pytest.fixture
def audit_repository(postgres_engine, timescale_engine):
    return AuditRepository(postgres_engine, timescale_engine)


@pytest.fixture
def order_repository(postgres_engine, timescale_engine, audit_repository):
    return OrderRepository(postgres_engine, timescale_engine, audit_repository)


@pytest.fixture
def metrics_repository(postgres_engine, timescale_engine, points_table):
    return MetricsRepository(postgres_engine, timescale_engine)


def count(repository: BaseRepository, table: str) -> int:
    return repository.postgres_db.query_row(background(), f"SELECT COUNT(*) FROM {table}")[0]


async def count_points(repository: BaseRepository) -> int:
    row = await repository.timescale_db.query_row(background(), "SELECT COUNT(*) FROM points")
    return row[0]


# ==================== PostgreSQL ====================


class TestPostgresPropagation:
    def test_nested_repositories_should_commit_together(self, order_repository):
        """
        Given: usecase 在 with_postgres_tx 中调用 OrderRepository，后者再调用 AuditRepository
        When: 全部成功
        Then: 订单和审计记录一起提交
        """
        handles = []

        def usecase(ctx):
            handles.append(order_repository.get_postgres_tx(ctx)[0])
            handles.append(order_repository.add(ctx, 1))

        order_repository.with_postgres_tx(background(), usecase)

        assert isinstance(handles[0], SQLAlchemyTransaction)
        assert handles[0] is handles[1]
        assert handles[0].closed is True
        assert count(order_repository, "orders") == 1
        assert count(order_repository, "audit") == 1

    def test_failure_in_usecase_should_roll_back_every_repository(self, order_repository):
        error = ValueError("payment declined")

        def usecase(ctx):
            order_repository.add(ctx, 1)
            raise error

        with pytest.raises(ValueError) as exc_info:
            order_repository.with_postgres_tx(background(), usecase)

        assert exc_info.value is error
        assert count(order_repository, "orders") == 0
        assert count(order_repository, "audit") == 0

    def test_separate_repository_instances_should_share_transaction(
        self, order_repository, audit_repository
    ):
        """事务键在模块级别，不同实例看到同一个事务"""
        with order_repository.postgres_transaction(background()) as ctx:
            own_tx, own_found = order_repository.get_postgres_tx(ctx)
            other_tx, other_found = audit_repository.get_postgres_tx(ctx)

        assert own_found and other_found
        assert own_tx is other_tx
        assert ctx.value(POSTGRES_TX_KEY) is own_tx

    def test_without_transaction_executor_should_be_database(self, order_repository):
        ctx = background()

        assert order_repository.postgres_executor(ctx) is order_repository.postgres_db
        assert order_repository.get_postgres_tx(ctx) == (None, False)

    def test_standalone_repository_call_should_open_own_transaction(self, order_repository):
        tx = order_repository.add(background(), 7)

        assert tx.closed is True
        assert count(order_repository, "orders") == 1
        assert count(order_repository, "audit") == 1

    def test_repository_should_satisfy_tx_repository_port(self, order_repository):
        def place(tx: TxRepository):
            return tx.with_postgres_tx(background(), lambda ctx: "ok")

        assert place(order_repository) == "ok"


# ==================== TimescaleDB ====================


class TestTimescalePropagation:
    @pytest.mark.asyncio
    async def test_nested_writes_should_commit_together(self, metrics_repository):
        async def usecase(ctx):
            await metrics_repository.record(ctx, 1, 0.1)
            await metrics_repository.with_timescale_tx(
                ctx, lambda inner: metrics_repository.record(inner, 2, 0.2)
            )
            return metrics_repository.get_timescale_tx(ctx)[0]

        tx = await metrics_repository.with_timescale_tx(background(), usecase)

        assert isinstance(tx, AsyncSQLAlchemyTransaction)
        assert tx.closed is True
        assert await count_points(metrics_repository) == 2

    @pytest.mark.asyncio
    async def test_failure_should_roll_back_all_points(self, metrics_repository):
        async def usecase(ctx):
            await metrics_repository.record(ctx, 1, 0.1)
            raise RuntimeError("bad batch")

        with pytest.raises(RuntimeError, match="bad batch"):
            await metrics_repository.with_timescale_tx(background(), usecase)

        assert await count_points(metrics_repository) == 0

    @pytest.mark.asyncio
    async def test_context_manager_form_should_attach_transaction(self, metrics_repository):
        async with metrics_repository.timescale_transaction(background()) as ctx:
            assert isinstance(ctx.value(TIMESCALE_TX_KEY), AsyncSQLAlchemyTransaction)
            assert metrics_repository.timescale_executor(ctx) is ctx.value(TIMESCALE_TX_KEY)
            await metrics_repository.record(ctx, 1, 1.0)

        assert await count_points(metrics_repository) == 1


class TestCrossFamily:
    @pytest.mark.asyncio
    async def test_each_family_should_manage_only_its_own_transaction(
        self, order_repository, metrics_repository
    ):
        """
        Given: 外层 TimescaleDB 事务内嵌 PostgreSQL 事务
        When: 内层 PostgreSQL 事务成功，随后外层失败
        Then: PostgreSQL 已提交，TimescaleDB 回滚（不做跨库两阶段提交）
        """

        async def usecase(ctx):
            await metrics_repository.record(ctx, 1, 1.0)
            order_repository.with_postgres_tx(ctx, lambda pg_ctx: order_repository.add(pg_ctx, 1))
            assert order_repository.get_postgres_tx(ctx) == (None, False)
            assert metrics_repository.get_timescale_tx(ctx)[1] is True
            raise RuntimeError("after postgres commit")

        with pytest.raises(RuntimeError):
            await metrics_repository.with_timescale_tx(background(), usecase)

        assert count(order_repository, "orders") == 1
        assert await count_points(metrics_repository) == 0

    @pytest.mark.asyncio
    async def test_both_families_should_be_visible_inside_nested_scopes(
        self, order_repository, metrics_repository
    ):
        seen = {}

        async def usecase(ts_ctx):
            def inner(pg_ctx):
                seen["postgres"] = order_repository.get_postgres_tx(pg_ctx)[1]
                seen["timescale"] = metrics_repository.get_timescale_tx(pg_ctx)[1]

            order_repository.with_postgres_tx(ts_ctx, inner)

        await metrics_repository.with_timescale_tx(background(), usecase)

        assert seen == {"postgres": True, "timescale": True}

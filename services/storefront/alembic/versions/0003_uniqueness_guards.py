"""coupon_and_address_uniqueness_guards

Revision ID: 0003_uniqueness_guards
Revises: 0002_delivery_dispatch
Create Date: 2025-03-24

"""
from alembic import op
import sqlalchemy as sa
import hashlib

revision = '0003_uniqueness_guards'
down_revision = '0002_delivery_dispatch'
branch_labels = None
depends_on = None


def _address_key(city, district, khoroo, address):
    raw = "\x1f".join([city, district or "", khoroo or "", address])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def upgrade() -> None:
    bind = op.get_bind()

    op.add_column('coupon_usage', sa.Column('redemption_key', sa.String(150), nullable=True))
    op.add_column('addresses', sa.Column('dedup_key', sa.String(64), nullable=True))

    # Backfill keys; keep the earliest row of every duplicate group
    usages = bind.execute(sa.text("""
        SELECT u.id, u.coupon_id, u.user_id, c.is_manual
        FROM coupon_usage u JOIN coupons c ON c.id = u.coupon_id
        ORDER BY u.id
    """)).fetchall()
    seen = set()
    for usage_id, coupon_id, user_id, is_manual in usages:
        key = f"{coupon_id}:{user_id}" if is_manual else str(coupon_id)
        if key in seen:
            bind.execute(sa.text("DELETE FROM coupon_usage WHERE id = :id"), {"id": usage_id})
            continue
        seen.add(key)
        bind.execute(
            sa.text("UPDATE coupon_usage SET redemption_key = :key WHERE id = :id"),
            {"key": key, "id": usage_id},
        )

    addresses = bind.execute(sa.text(
        "SELECT id, user_id, city, district, khoroo, address FROM addresses ORDER BY id"
    )).fetchall()
    seen = set()
    for address_id, user_id, city, district, khoroo, address in addresses:
        key = _address_key(city, district, khoroo, address)
        if (user_id, key) in seen:
            bind.execute(sa.text("DELETE FROM addresses WHERE id = :id"), {"id": address_id})
            continue
        seen.add((user_id, key))
        bind.execute(
            sa.text("UPDATE addresses SET dedup_key = :key WHERE id = :id"),
            {"key": key, "id": address_id},
        )

    # At most one default per user: keep the most recently updated one
    bind.execute(sa.text("""
        UPDATE addresses SET is_default = false
        WHERE is_default AND id NOT IN (
            SELECT MAX(id) FROM addresses WHERE is_default GROUP BY user_id
        )
    """))

    with op.batch_alter_table('coupon_usage') as batch:
        batch.alter_column('redemption_key', existing_type=sa.String(150), nullable=False)
        batch.create_unique_constraint('uq_coupon_usage_redemption_key', ['redemption_key'])
    with op.batch_alter_table('addresses') as batch:
        batch.alter_column('dedup_key', existing_type=sa.String(64), nullable=False)
        batch.create_unique_constraint('uq_addresses_user_dedup', ['user_id', 'dedup_key'])

    op.create_index(
        'uq_addresses_user_default', 'addresses', ['user_id'], unique=True,
        postgresql_where=sa.text('is_default'),
        sqlite_where=sa.text('is_default = 1'),
    )


def downgrade() -> None:
    op.drop_index('uq_addresses_user_default', table_name='addresses')
    with op.batch_alter_table('addresses') as batch:
        batch.drop_constraint('uq_addresses_user_dedup', type_='unique')
        batch.drop_column('dedup_key')
    with op.batch_alter_table('coupon_usage') as batch:
        batch.drop_constraint('uq_coupon_usage_redemption_key', type_='unique')
        batch.drop_column('redemption_key')

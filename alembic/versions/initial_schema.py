"""Create field CRM schema

Revision ID: initial_schema
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum('ADMIN', 'COORDINATOR', 'WAREHOUSEMAN', 'TECHNICIAN', name='userrole')
user_status = sa.Enum('ACTIVE', 'INACTIVE', 'SUSPENDED', 'DELETED', name='userstatus')
order_status = sa.Enum('PENDING', 'ASSIGNED', 'COMPLETED', 'NOT_COMPLETED', name='orderstatus')
order_type = sa.Enum('INSTALLATION', 'SERVICE', 'OUTAGE', name='ordertype')
item_type = sa.Enum('DEVICE', 'MATERIAL', name='itemtype')
item_status = sa.Enum(
    'AVAILABLE', 'ASSIGNED', 'ASSIGNED_TO_ORDER', 'RETURNED', 'RETURNED_TO_OPERATOR', 'COLLECTED_FROM_CLIENT',
    name='warehouseitemstatus',
)
warehouse_action = sa.Enum(
    'RECEIVED', 'ISSUED', 'RETURNED', 'TRANSFER', 'ASSIGNED_TO_ORDER', 'RETURNED_TO_OPERATOR', 'COLLECTED_FROM_CLIENT',
    name='warehouseaction',
)


def upgrade() -> None:
    # Modules and locations
    op.create_table('modules',
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('code')
    )
    op.create_table('locations',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Users
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=150), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('phone_number', sa.String(length=30), nullable=True),
        sa.Column('identifier', sa.String(length=50), nullable=True),
        sa.Column('password_hash', sa.String(length=100), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('status', user_status, nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_table('user_modules',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.PrimaryKeyConstraint('user_id', 'module_code')
    )
    op.create_table('user_locations',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.String(length=50), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('user_id', 'location_id')
    )
    op.create_table('module_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'module_code', name='uq_module_profile_user_module')
    )
    op.create_table('technician_settings',
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('working_days_goal', sa.Integer(), nullable=False),
        sa.Column('revenue_goal', sa.DECIMAL(precision=12, scale=2), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_table('auth_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('revoked', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('access_token')
    )
    op.create_index(op.f('ix_auth_tokens_id'), 'auth_tokens', ['id'], unique=False)

    # Teams and definitions
    op.create_table('teams',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('technician1_id', sa.Integer(), nullable=False),
        sa.Column('technician2_id', sa.Integer(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.ForeignKeyConstraint(['technician1_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['technician2_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('rate_definitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('code', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.DECIMAL(precision=10, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('module_code', 'code', name='uq_rate_module_code')
    )
    op.create_table('material_definitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('material_index', sa.String(length=50), nullable=True),
        sa.Column('unit', sa.String(length=20), nullable=False),
        sa.Column('price', sa.DECIMAL(precision=10, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('module_code', 'name', name='uq_material_module_name')
    )
    op.create_table('device_definitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('price', sa.DECIMAL(precision=10, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('module_code', 'category', 'name', name='uq_device_module_category_name')
    )

    # Orders
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('type', order_type, nullable=False),
        sa.Column('status', order_status, nullable=False),
        sa.Column('operator', sa.String(length=50), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('street', sa.String(length=150), nullable=False),
        sa.Column('postal_code', sa.String(length=20), nullable=True),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.String(length=100), nullable=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('previous_order_id', sa.Integer(), nullable=True),
        sa.Column('technician_id', sa.Integer(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('lat', sa.Float(), nullable=True),
        sa.Column('lng', sa.Float(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.ForeignKeyConstraint(['previous_order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['technician_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_orders_module_code'), 'orders', ['module_code'], unique=False)
    op.create_index(op.f('ix_orders_order_number'), 'orders', ['order_number'], unique=False)
    op.create_table('order_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('changed_by_id', sa.Integer(), nullable=True),
        sa.Column('status_before', order_status, nullable=True),
        sa.Column('status_after', order_status, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['changed_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('order_materials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('material_definition_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(length=20), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['material_definition_id'], ['material_definitions.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('settlement_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=30), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )

    # Warehouse
    op.create_table('warehouse_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('module_code', sa.String(length=20), nullable=False),
        sa.Column('item_type', item_type, nullable=False),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('name', sa.String(length=150), nullable=False),
        sa.Column('serial_number', sa.String(length=100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(length=20), nullable=True),
        sa.Column('price', sa.DECIMAL(precision=10, scale=2), nullable=True),
        sa.Column('status', item_status, nullable=False),
        sa.Column('assigned_to_id', sa.Integer(), nullable=True),
        sa.Column('location_id', sa.String(length=50), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('transfer_pending', sa.Boolean(), nullable=False),
        sa.Column('transfer_to_id', sa.Integer(), nullable=True),
        sa.Column('material_definition_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['module_code'], ['modules.code'], ),
        sa.ForeignKeyConstraint(['assigned_to_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['transfer_to_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['material_definition_id'], ['material_definitions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('module_code', 'serial_number', name='uq_item_module_serial')
    )
    op.create_index(op.f('ix_warehouse_items_module_code'), 'warehouse_items', ['module_code'], unique=False)
    op.create_table('order_equipment',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_item_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['warehouse_item_id'], ['warehouse_items.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('warehouse_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('warehouse_item_id', sa.Integer(), nullable=False),
        sa.Column('action', warehouse_action, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('performed_by_id', sa.Integer(), nullable=True),
        sa.Column('assigned_to_id', sa.Integer(), nullable=True),
        sa.Column('assigned_order_id', sa.Integer(), nullable=True),
        sa.Column('from_location_id', sa.String(length=50), nullable=True),
        sa.Column('to_location_id', sa.String(length=50), nullable=True),
        sa.Column('source_history_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('action_date', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['warehouse_item_id'], ['warehouse_items.id'], ),
        sa.ForeignKeyConstraint(['performed_by_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['assigned_to_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['assigned_order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['from_location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['to_location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['source_history_id'], ['warehouse_history.id'], ),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('warehouse_history')
    op.drop_table('order_equipment')
    op.drop_index(op.f('ix_warehouse_items_module_code'), table_name='warehouse_items')
    op.drop_table('warehouse_items')
    op.drop_table('settlement_entries')
    op.drop_table('order_materials')
    op.drop_table('order_history')
    op.drop_index(op.f('ix_orders_order_number'), table_name='orders')
    op.drop_index(op.f('ix_orders_module_code'), table_name='orders')
    op.drop_table('orders')
    op.drop_table('device_definitions')
    op.drop_table('material_definitions')
    op.drop_table('rate_definitions')
    op.drop_table('teams')
    op.drop_index(op.f('ix_auth_tokens_id'), table_name='auth_tokens')
    op.drop_table('auth_tokens')
    op.drop_table('technician_settings')
    op.drop_table('module_profiles')
    op.drop_table('user_locations')
    op.drop_table('user_modules')
    op.drop_table('users')
    op.drop_table('locations')
    op.drop_table('modules')
    for enum in (warehouse_action, item_status, item_type, order_type, order_status, user_status, user_role):
        enum.drop(op.get_bind(), checkfirst=True)

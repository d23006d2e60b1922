import django.core.validators
import django.db.models.deletion
import django.db.models.manager
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Item',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('is_deleted', models.BooleanField(db_index=True, default=False, help_text='Tombstone marker, deleted rows are hidden from default queries')),
                ('deleted_at', models.DateTimeField(blank=True, help_text='When the row was soft-deleted', null=True)),
                ('name', models.CharField(db_index=True, help_text='Item display name', max_length=200)),
                ('price', models.DecimalField(decimal_places=2, help_text='Current unit price (must be positive)', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Item',
                'verbose_name_plural': 'Items',
                'ordering': ['id'],
                'abstract': False,
                'base_manager_name': 'all_objects',
            },
            managers=[
                ('objects', django.db.models.manager.Manager()),
                ('all_objects', django.db.models.manager.Manager()),
            ],
        ),
        migrations.CreateModel(
            name='InventoryMovement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('is_deleted', models.BooleanField(db_index=True, default=False, help_text='Tombstone marker, deleted rows are hidden from default queries')),
                ('deleted_at', models.DateTimeField(blank=True, help_text='When the row was soft-deleted', null=True)),
                ('qty', models.PositiveIntegerField(help_text='Quantity moved', validators=[django.core.validators.MinValueValidator(1)])),
                ('kind', models.CharField(choices=[('T', 'Top Up'), ('W', 'Withdrawal')], help_text='T = Top Up, W = Withdrawal', max_length=1)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('item', models.ForeignKey(help_text='Item whose stock this movement adjusts', on_delete=django.db.models.deletion.PROTECT, related_name='movements', to='inventory.item')),
            ],
            options={
                'verbose_name': 'Inventory Movement',
                'verbose_name_plural': 'Inventory Movements',
                'ordering': ['-id'],
                'abstract': False,
                'base_manager_name': 'all_objects',
                'indexes': [models.Index(fields=['item', 'is_deleted', 'kind'], name='inv_movement_item_kind_idx')],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('qty__gt', 0)), name='inventory_movement_qty_positive'),
                    models.CheckConstraint(condition=models.Q(('kind__in', ['T', 'W'])), name='inventory_movement_kind_valid'),
                ],
            },
            managers=[
                ('objects', django.db.models.manager.Manager()),
                ('all_objects', django.db.models.manager.Manager()),
            ],
        ),
    ]

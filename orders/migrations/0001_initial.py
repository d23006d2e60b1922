import django.core.validators
import django.db.models.deletion
import django.db.models.manager
from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('inventory', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('is_deleted', models.BooleanField(db_index=True, default=False, help_text='Tombstone marker, deleted rows are hidden from default queries')),
                ('deleted_at', models.DateTimeField(blank=True, help_text='When the row was soft-deleted', null=True)),
                ('order_no', models.CharField(editable=False, help_text='Order number (O1, O2, O3, ...)', max_length=50, primary_key=True, serialize=False, validators=[django.core.validators.RegexValidator('^O\\d+$', 'Order number must look like O<n>')])),
                ('qty', models.PositiveIntegerField(help_text='Quantity ordered', validators=[django.core.validators.MinValueValidator(1)])),
                ('price', models.DecimalField(decimal_places=2, help_text='Price per unit at time of order', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('item', models.ForeignKey(help_text='Ordered item', on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='inventory.item')),
            ],
            options={
                'verbose_name': 'Order',
                'verbose_name_plural': 'Orders',
                'ordering': ['-created_at'],
                'abstract': False,
                'base_manager_name': 'all_objects',
                'indexes': [models.Index(fields=['item', 'is_deleted'], name='order_item_deleted_idx')],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('qty__gt', 0)), name='order_qty_positive'),
                ],
            },
            managers=[
                ('objects', django.db.models.manager.Manager()),
                ('all_objects', django.db.models.manager.Manager()),
            ],
        ),
    ]

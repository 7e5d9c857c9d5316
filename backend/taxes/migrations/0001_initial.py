import decimal
import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Tax',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('rate', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(decimal.Decimal('0'))])),
                ('type', models.CharField(choices=[('percentage', 'Percentage (%)'), ('fixed', 'Fixed Amount ($)')], default='percentage', max_length=20)),
                ('status', models.CharField(choices=[('active', 'Active'), ('inactive', 'Inactive')], default='active', max_length=20)),
                ('description', models.CharField(blank=True, max_length=500)),
                ('product_type', models.CharField(blank=True, choices=[('', 'All Products'), ('luxury', 'Luxury Items'), ('digital', 'Digital Products'), ('perishable', 'Perishable Goods'), ('hazardous', 'Hazardous Materials')], default='', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'taxes',
                'ordering': ['name', 'id'],
                'verbose_name_plural': 'taxes',
            },
        ),
        migrations.CreateModel(
            name='TaxAssignment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('target_type', models.CharField(choices=[('product', 'Products'), ('category', 'Categories'), ('customer', 'Customers'), ('store', 'Stores'), ('supplier', 'Suppliers')], max_length=20)),
                ('target_id', models.CharField(max_length=100)),
                ('target_name', models.CharField(blank=True, max_length=255)),
                ('position', models.PositiveIntegerField(default=0)),
                ('tax', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assignments', to='taxes.tax')),
            ],
            options={
                'db_table': 'tax_assignments',
                'ordering': ['position', 'id'],
            },
        ),
        migrations.CreateModel(
            name='TaxRule',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('condition_field', models.CharField(choices=[('region', 'Region'), ('total_amount', 'Total Amount'), ('customer_type', 'Customer Type'), ('product_category', 'Product Category'), ('store_location', 'Store Location'), ('quantity', 'Quantity')], max_length=30)),
                ('operator', models.CharField(choices=[('==', 'Equals'), ('!=', 'Not Equals'), ('>=', 'Greater than or equal'), ('<=', 'Less than or equal'), ('>', 'Greater than'), ('<', 'Less than'), ('in', 'In list'), ('not_in', 'Not in list')], max_length=10)),
                ('value', models.JSONField(blank=True, default=str)),
                ('value_type', models.CharField(choices=[('string', 'String'), ('number', 'Number'), ('array', 'Array')], default='string', max_length=10)),
                ('position', models.PositiveIntegerField(default=0)),
                ('tax', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='rules', to='taxes.tax')),
            ],
            options={
                'db_table': 'tax_rules',
                'ordering': ['position', 'id'],
            },
        ),
    ]

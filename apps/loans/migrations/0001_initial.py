from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('members', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Loan',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, help_text='Principal amount.', max_digits=15, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('total_amount', models.DecimalField(decimal_places=2, help_text='Principal plus interest.', max_digits=15, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('amount_paid', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=15)),
                ('amount_remaining', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=15, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('active', 'Active'), ('completed', 'Completed'), ('declined', 'Declined'), ('cancelled', 'Cancelled'), ('defaulted', 'Defaulted')], db_index=True, default='pending', max_length=10)),
                ('borrower_funding_source_url', models.URLField(blank=True, default='', help_text="Borrower's gateway funding source handle.", max_length=500)),
                ('lender_funding_source_url', models.URLField(blank=True, default='', help_text="Lender's gateway funding source handle.", max_length=500)),
                ('borrower_name', models.CharField(blank=True, default='', max_length=200)),
                ('borrower_email', models.EmailField(blank=True, default='', max_length=254)),
                ('lender_name', models.CharField(blank=True, default='', max_length=200)),
                ('lender_email', models.EmailField(blank=True, default='', max_length=254)),
                ('invite_token', models.CharField(blank=True, default='', max_length=64)),
                ('borrower_access_token', models.CharField(blank=True, default='', max_length=64)),
                ('last_payment_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('borrower', models.ForeignKey(blank=True, help_text='Registered borrower (empty for guest borrowers).', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='borrowed_loans', to='members.member')),
                ('lender', models.ForeignKey(blank=True, help_text='Individual lender.', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='lent_loans', to='members.member')),
                ('business_lender', models.ForeignKey(blank=True, help_text='Business lender.', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='loans', to='members.businessprofile')),
            ],
            options={
                'db_table': 'loans',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('lender__isnull', True), ('business_lender__isnull', True), _connector='OR'),
                        name='loan_single_lender_kind',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='PaymentScheduleItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=15, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('due_date', models.DateField(db_index=True)),
                ('is_paid', models.BooleanField(db_index=True, default=False)),
                ('status', models.CharField(choices=[('scheduled', 'Scheduled'), ('paid', 'Paid'), ('missed', 'Missed')], default='scheduled', max_length=10)),
                ('transfer_id', models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('platform_fee', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('loan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule', to='loans.loan')),
            ],
            options={
                'db_table': 'payment_schedule',
                'ordering': ['due_date', 'id'],
                'indexes': [
                    models.Index(fields=['is_paid', 'due_date'], name='idx_schedule_unpaid_due'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=15)),
                ('payment_date', models.DateTimeField()),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed')], default='confirmed', max_length=10)),
                ('note', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('loan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='loans.loan')),
                ('schedule', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='payments', to='loans.paymentscheduleitem')),
            ],
            options={
                'db_table': 'payments',
                'ordering': ['-payment_date'],
            },
        ),
        migrations.AddField(
            model_name='paymentscheduleitem',
            name='payment',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='loans.payment'),
        ),
        migrations.CreateModel(
            name='Transfer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('dwolla_transfer_id', models.CharField(max_length=100, unique=True)),
                ('dwolla_transfer_url', models.URLField(blank=True, default='', max_length=500)),
                ('type', models.CharField(choices=[('repayment', 'Repayment'), ('disbursement', 'Disbursement')], max_length=12)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=15)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed')], default='pending', max_length=10)),
                ('platform_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('fee_type', models.CharField(blank=True, default='', max_length=10)),
                ('gross_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('net_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('loan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transfers', to='loans.loan')),
            ],
            options={
                'db_table': 'transfers',
                'ordering': ['-created_at'],
            },
        ),
    ]

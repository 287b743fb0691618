from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Member',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('email', models.EmailField(help_text="Member's email address.", max_length=254, unique=True)),
                ('full_name', models.CharField(help_text="Member's full name.", max_length=200)),
                ('payments_missed', models.PositiveIntegerField(default=0)),
                ('borrower_rating', models.CharField(choices=[('great', 'Great'), ('good', 'Good'), ('neutral', 'Neutral'), ('poor', 'Poor'), ('bad', 'Bad'), ('worst', 'Worst')], default='neutral', max_length=10)),
                ('borrower_rating_updated_at', models.DateTimeField(blank=True, null=True)),
                ('borrowing_tier', models.PositiveSmallIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)])),
                ('max_borrowing_amount', models.DecimalField(decimal_places=2, default=Decimal('150.00'), max_digits=12)),
                ('total_payments_made', models.PositiveIntegerField(default=0)),
                ('payments_early', models.PositiveIntegerField(default=0)),
                ('payments_on_time', models.PositiveIntegerField(default=0)),
                ('payments_late', models.PositiveIntegerField(default=0)),
                ('total_amount_repaid', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=15)),
                ('current_outstanding_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=15, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('loans_at_current_tier', models.PositiveIntegerField(default=0)),
                ('total_loans_completed', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'users',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='BusinessProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('business_name', models.CharField(max_length=200)),
                ('contact_email', models.EmailField(blank=True, default='', max_length=254)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='businesses', to='members.member')),
            ],
            options={
                'db_table': 'business_profiles',
                'ordering': ['business_name'],
            },
        ),
    ]

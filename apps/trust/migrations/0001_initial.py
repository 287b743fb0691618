import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('members', '0001_initial'),
        ('loans', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='TrustScore',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('score', models.PositiveSmallIntegerField(default=50)),
                ('event_count', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('member', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='trust_score', to='members.member')),
            ],
            options={
                'db_table': 'trust_scores',
            },
        ),
        migrations.CreateModel(
            name='TrustScoreEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('payment_early', 'Early payment'), ('payment_ontime', 'On-time payment'), ('payment_late', 'Late payment'), ('payment_missed', 'Missed payment'), ('loan_completed', 'Loan completed'), ('first_loan_completed', 'First loan completed')], max_length=24)),
                ('score_impact', models.SmallIntegerField()),
                ('title', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True, default='')),
                ('dedup_key', models.CharField(max_length=100, unique=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('loan', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='trust_events', to='loans.loan')),
                ('member', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='trust_events', to='members.member')),
            ],
            options={
                'db_table': 'trust_score_events',
                'ordering': ['-created_at'],
            },
        ),
    ]

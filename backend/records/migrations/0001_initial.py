from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SchoolUser",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("user_id", models.CharField(max_length=32)),
                ("role", models.CharField(choices=[("admin", "Admin"), ("teacher", "Teacher"), ("student", "Student"), ("parent", "Parent")], max_length=16)),
                ("name", models.CharField(blank=True, default="", max_length=255)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("date_of_birth", models.DateField(blank=True, null=True)),
                ("password", models.CharField(max_length=128)),
                ("temporary_password", models.CharField(blank=True, max_length=64, null=True)),
                ("password_change_required", models.BooleanField(default=True)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "db_table": "records_school_user",
                "indexes": [models.Index(fields=["school_code", "role"], name="school_user_role_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("school_code", "role", "user_id"), name="uniq_school_role_user_id"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("sender_id", models.CharField(max_length=32)),
                ("recipient_id", models.CharField(blank=True, default="", max_length=32)),
                ("subject", models.CharField(blank=True, default="", max_length=255)),
                ("body", models.TextField(blank=True, default="")),
            ],
            options={"db_table": "records_message"},
        ),
        migrations.CreateModel(
            name="Result",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("student_id", models.CharField(max_length=32)),
                ("subject", models.CharField(max_length=100)),
                ("term", models.CharField(blank=True, default="", max_length=50)),
                ("marks", models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ("is_frozen", models.BooleanField(default=False)),
            ],
            options={"db_table": "records_result"},
        ),
        migrations.CreateModel(
            name="Timetable",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("class_name", models.CharField(max_length=50)),
                ("section", models.CharField(blank=True, default="", max_length=10)),
                ("entries", models.JSONField(blank=True, default=list)),
            ],
            options={"db_table": "records_timetable"},
        ),
        migrations.CreateModel(
            name="PermissionOverride",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("matrix", models.JSONField(blank=True, default=dict)),
                ("updated_by", models.CharField(blank=True, default="", max_length=32)),
            ],
            options={
                "db_table": "records_permission_override",
                "constraints": [
                    models.UniqueConstraint(fields=("school_code",), name="uniq_permission_override_school"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TenantInfo",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("display_name", models.CharField(blank=True, default="", max_length=255)),
                ("contact_email", models.EmailField(blank=True, default="", max_length=254)),
                ("contact_phone", models.CharField(blank=True, default="", max_length=32)),
            ],
            options={
                "db_table": "records_tenant_info",
                "constraints": [
                    models.UniqueConstraint(fields=("school_code",), name="uniq_tenant_info_school"),
                ],
            },
        ),
        migrations.CreateModel(
            name="IdentifierSequence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("school_code", models.CharField(db_index=True, max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=50)),
                ("last_value", models.BigIntegerField(default=0)),
            ],
            options={
                "db_table": "records_identifier_sequence",
                "constraints": [
                    models.UniqueConstraint(fields=("school_code", "name"), name="uniq_school_sequence_name"),
                ],
            },
        ),
    ]

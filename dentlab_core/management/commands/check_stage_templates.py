# dentlab_core/management/commands/check_stage_templates.py

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from dentlab_core.models import CaseType, StageTemplate


class Command(BaseCommand):
    help = "Validate stored stage templates: dense 1..N orders and unique keys per type"

    def add_arguments(self, parser):
        parser.add_argument(
            "--fix",
            action="store_true",
            help="Renumber orders to 1..N (key collisions still need a manual fix)",
        )

    def handle(self, *args, **options):
        fix = options["fix"]
        self.stdout.write("Checking stage templates…\n")

        errors_found = False

        for case_type in CaseType.objects.order_by("key"):
            stages = list(case_type.stages.order_by("order", "id"))
            orders = [s.order for s in stages]
            problems = []

            if orders != list(range(1, len(stages) + 1)):
                problems.append(f"orders {orders} are not 1..{len(stages)}")

            seen = {}
            for s in stages:
                kk = s.key.casefold()
                if kk in seen:
                    problems.append(f"duplicate key '{s.key}' (orders {seen[kk]} and {s.order})")
                else:
                    seen[kk] = s.order

            if any(not s.name.strip() for s in stages):
                problems.append("stage with empty name")

            if not problems:
                self.stdout.write(f"[OK] type='{case_type.key}' ({len(stages)} stages)")
                continue

            for p in problems:
                self.stderr.write(f"[ERROR] type='{case_type.key}': {p}")

            if fix and orders != list(range(1, len(stages) + 1)):
                with transaction.atomic():
                    for n, s in enumerate(stages, start=1):
                        s.order = n
                    StageTemplate.objects.bulk_update(stages, ["order"])
                self.stdout.write(f"[FIXED] type='{case_type.key}': orders renumbered")
                # order problems are gone; anything else still counts
                if len(problems) > 1 or not problems[0].startswith("orders"):
                    errors_found = True
            else:
                errors_found = True

        if errors_found:
            self.stderr.write("\nStage template validation FAILED.")
            raise CommandError("One or more case types have invalid stage templates.")

        self.stdout.write("\nAll stage templates validated successfully.")

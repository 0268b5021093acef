from django.core.management.base import BaseCommand

from examroom.services import reconcile_results


class Command(BaseCommand):
    help = 'Scores exam attempts whose time has run out but that were never submitted'

    def handle(self, *args, **options):
        results = reconcile_results()
        for result in results:
            self.stdout.write(
                f"{result.student} - {result.exam}: {result.score:.1f} "
                f"({result.correct_count}/{result.total_questions})"
            )
        self.stdout.write(self.style.SUCCESS(f"Scored {len(results)} unsubmitted attempts"))

from django.core.management.base import BaseCommand, CommandError

from examroom import session as exam_session
from examroom.backends import HttpBackend, LocalBackend
from examroom.exceptions import SessionClosed
from examroom.scheduling import ThreadScheduler

HELP_TEXT = 'Answer with A-D, true/false or free text. Commands: :n next, :p previous, :g <number> go to, :f finish, :q quit'


class Command(BaseCommand):
    help = 'Takes an exam from the terminal with an entry code'

    def add_arguments(self, parser):
        parser.add_argument('exam_id')
        parser.add_argument('code')
        parser.add_argument('--server', help='Base URL of a running server; runs in-process when omitted')

    def handle(self, *args, **options):
        code = options['code'].strip().upper()
        if options['server']:
            backend = HttpBackend(options['server'], options['exam_id'], code)
        else:
            backend = LocalBackend(options['exam_id'], code)

        session = exam_session.ExamSession(backend, ThreadScheduler())
        state = session.start()
        if state in (exam_session.NOT_STARTED, exam_session.ERROR):
            raise CommandError(session.last_error)

        try:
            if state == exam_session.ACTIVE:
                self.stdout.write(f"{session.exam['title']} - {session.student}")
                self.stdout.write(HELP_TEXT)
                self.run(session)
        finally:
            session.close()

        self.report(session)

    def run(self, session):
        while session.state == exam_session.ACTIVE:
            self.show(session)
            try:
                line = input('> ').strip()
            except EOFError:
                line = ':q'

            if session.state != exam_session.ACTIVE:
                break
            try:
                if not self.dispatch(session, line):
                    return
            except SessionClosed as e:
                self.stderr.write(e.message)

    def dispatch(self, session, line):
        question = session.current_question
        if line == ':q':
            session.flush_pending()
            return False
        if line == ':f':
            session.finish()
        elif line == ':n':
            session.next_question()
        elif line == ':p':
            session.previous_question()
        elif line.startswith(':g'):
            try:
                session.go_to(int(line[2:].strip()) - 1)
            except (ValueError, IndexError):
                self.stderr.write('No such question.')
        elif question['question_type'] == 'fill':
            session.type_answer(question['id'], line)
            session.flush_pending()
            session.next_question()
        elif line:
            value = line.upper() if question['question_type'] == 'multiple_choice' else line.lower()
            session.select_answer(question['id'], value)

        if session.last_error:
            self.stderr.write(session.last_error)
        return True

    def show(self, session):
        question = session.current_question
        minutes, seconds = divmod(session.remaining or 0, 60)
        self.stdout.write('')
        self.stdout.write(
            f"[{minutes:02d}:{seconds:02d}] Question {session.current_index + 1}/{len(session.questions)} "
            f"({session.answered_count()} answered)"
        )
        self.stdout.write(question['question_text'])
        if question['question_type'] == 'multiple_choice':
            for letter, text in question['options'].items():
                if text:
                    self.stdout.write(f"  {letter}) {text}")
        elif question['question_type'] == 'true_false':
            self.stdout.write('  true / false')
        current = session.answers.get(str(question['id']))
        if current:
            self.stdout.write(f"  Your answer: {current}")

    def report(self, session):
        if session.state == exam_session.STOPPED:
            self.stdout.write(self.style.WARNING(session.last_error))
        elif session.state == exam_session.SUBMIT_FAILED:
            self.stdout.write(self.style.WARNING('Submitting failed, retrying once more...'))
            session.retry_finish()

        if session.state == exam_session.FINISHED and session.result:
            result = session.result
            self.stdout.write(self.style.SUCCESS(
                f"Score: {result['score']:.1f} - correct {result['correct_count']}, "
                f"wrong {result['wrong_count']}, unanswered {result['unanswered_count']}"
            ))
        elif session.state == exam_session.SUBMIT_FAILED:
            raise CommandError('The exam could not be submitted. Run the command again to retry.')

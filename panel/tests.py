from datetime import timedelta

from django.contrib.auth.models import User
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from examroom import services
from examroom.models import Result
from .codes import ENTRY_CODE_ALPHABET, generate_entry_code, unique_entry_code
from .models import Department, Exam, ExamStudent, Question, Student, validate_question_fields


class EntryCodeTestCase(SimpleTestCase):
    def test_codes_use_unambiguous_alphabet(self):
        for _ in range(50):
            code = generate_entry_code()
            self.assertEqual(len(code), 6)
            self.assertTrue(set(code) <= set(ENTRY_CODE_ALPHABET))
        self.assertNotIn('O', ENTRY_CODE_ALPHABET)
        self.assertNotIn('1', ENTRY_CODE_ALPHABET)


class ModelTestCase(TestCase):
    def test_students_and_assignments_get_codes(self):
        student = Student.objects.create(name='Ali', surname='Kaya', phone='5551234567')
        self.assertEqual(len(student.student_code), 6)

        exam = Exam.objects.create(title='Math')
        assignment = ExamStudent.objects.create(exam=exam, student=student)
        self.assertEqual(len(assignment.student_code), 6)

    def test_unique_entry_code_avoids_taken_codes(self):
        student = Student.objects.create(name='Ali', surname='Kaya', phone='5551234567')
        code = unique_entry_code(Student.objects.all())
        self.assertNotEqual(code, student.student_code)

    def test_question_rules(self):
        options = {'A': 'one', 'B': 'two', 'C': '', 'D': ''}
        self.assertEqual(validate_question_fields(Question.MULTIPLE_CHOICE, 'b', options, 1), {})
        self.assertIn('correct_answer', validate_question_fields(Question.MULTIPLE_CHOICE, 'C', options, 1))
        self.assertIn('correct_answer', validate_question_fields(Question.MULTIPLE_CHOICE, 'E', options, 1))
        self.assertEqual(validate_question_fields(Question.TRUE_FALSE, 'False', {}, 1), {})
        self.assertIn('correct_answer', validate_question_fields(Question.TRUE_FALSE, 'yes', {}, 1))
        self.assertIn('correct_answer', validate_question_fields(Question.FILL, ' ', {}, 1))
        self.assertIn('points', validate_question_fields(Question.FILL, 'x', {}, 0))

    def test_new_exams_use_default_passing_grade(self):
        self.assertEqual(Exam.objects.create(title='Math').passing_grade, 50)


class PanelApiTestCase(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_superuser('admin', 'admin@example.com', 'password123')
        self.client.force_authenticate(user=self.admin)
        self.department = Department.objects.create(name='Science')

    def create_students(self, count=3):
        return [
            Student.objects.create(
                name=f'Student{i}', surname='Aydin', phone=f'555000000{i}',
                department=self.department if i % 2 == 0 else None,
            )
            for i in range(count)
        ]

    def test_panel_is_admin_only(self):
        self.client.force_authenticate(user=None)
        response = self.client.get(reverse('student-list'))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

        proctor = User.objects.create_user('proctor', 'proctor@example.com', 'password123')
        self.client.force_authenticate(user=proctor)
        response = self.client.get(reverse('student-list'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_department_counts(self):
        self.create_students()
        response = self.client.get(reverse('department-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['student_count'], 2)

    def test_create_student_validates_before_writing(self):
        response = self.client.post(reverse('student-list'), {
            'name': ' ', 'surname': 'Aydin', 'phone': '12345',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data)
        self.assertIn('phone', response.data)
        self.assertEqual(Student.objects.count(), 0)

        response = self.client.post(reverse('student-list'), {
            'name': 'Elif', 'surname': 'Aydin', 'phone': '05551112233', 'department': str(self.department.pk),
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['student_code']), 6)
        self.assertEqual(response.data['department_name'], 'Science')

    def test_student_filters(self):
        students = self.create_students(4)
        Student.objects.filter(pk=students[3].pk).update(active=False)

        response = self.client.get(reverse('student-list'), {'search': 'student1'})
        self.assertEqual([s['id'] for s in response.data], [str(students[1].pk)])

        response = self.client.get(reverse('student-list'), {'search': students[2].student_code.lower()})
        self.assertEqual(len(response.data), 1)

        response = self.client.get(reverse('student-list'), {'department': str(self.department.pk)})
        self.assertEqual(len(response.data), 2)

        response = self.client.get(reverse('student-list'), {'active': 'false'})
        self.assertEqual([s['id'] for s in response.data], [str(students[3].pk)])

    def test_bulk_actions(self):
        students = self.create_students(3)
        ids = [str(s.pk) for s in students[:2]]

        response = self.client.post(reverse('student-bulk-status'), {'ids': ids, 'active': False}, format='json')
        self.assertEqual(response.data['updated'], 2)
        self.assertEqual(Student.objects.filter(active=False).count(), 2)

        old_codes = {s.pk: s.student_code for s in students}
        response = self.client.post(reverse('student-regenerate-codes'), {'ids': ids}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        for student in Student.objects.filter(pk__in=ids):
            self.assertNotEqual(student.student_code, old_codes[student.pk])

        response = self.client.post(reverse('student-bulk-delete'), {'ids': ids}, format='json')
        self.assertEqual(response.data['deleted'], 2)
        self.assertEqual(Student.objects.count(), 1)

        response = self.client.post(reverse('student-bulk-delete'), {'ids': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_export_csv_has_bom(self):
        self.create_students(2)
        response = self.client.get(reverse('student-export-csv'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        content = response.content.decode('utf-8')
        self.assertTrue(content.startswith('\ufeff'))
        lines = content.lstrip('\ufeff').strip().splitlines()
        self.assertEqual(lines[0], 'Name,Surname,Phone,Department,Status,Created')
        self.assertEqual(len(lines), 3)

    def test_create_exam_with_questions(self):
        response = self.client.post(reverse('exam-list'), {
            'title': 'Biology',
            'duration': 40,
            'department': str(self.department.pk),
            'questions': [
                {
                    'question_text': 'Cells have a nucleus.',
                    'question_type': 'true_false',
                    'correct_answer': 'TRUE',
                },
                {
                    'question_text': 'Powerhouse of the cell?',
                    'question_type': 'multiple_choice',
                    'option_a': 'Mitochondria', 'option_b': 'Ribosome',
                    'correct_answer': 'a',
                    'points': 2,
                },
            ],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        exam = Exam.objects.get(pk=response.data['id'])
        self.assertFalse(exam.is_active)
        self.assertEqual(
            list(exam.questions.values_list('correct_answer', 'order')),
            [('true', 1), ('A', 2)],
        )

    def test_invalid_question_rejects_whole_exam(self):
        response = self.client.post(reverse('exam-list'), {
            'title': 'Biology',
            'questions': [{'question_text': 'Pick', 'question_type': 'multiple_choice', 'correct_answer': 'D'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Exam.objects.count(), 0)

    def test_exam_dates_must_be_ordered(self):
        now = timezone.now()
        response = self.client.post(reverse('exam-list'), {
            'title': 'Biology',
            'start_date': now.isoformat(),
            'end_date': (now - timedelta(hours=1)).isoformat(),
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('end_date', response.data)

    def test_activation(self):
        exam = Exam.objects.create(title='Empty')
        response = self.client.post(reverse('exam-activate', args=[exam.pk]))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        Question.objects.create(exam=exam, question_text='?', question_type=Question.FILL, correct_answer='x')
        response = self.client.post(reverse('exam-activate', args=[exam.pk]))
        self.assertTrue(response.data['is_active'])
        response = self.client.post(reverse('exam-deactivate', args=[exam.pk]))
        self.assertFalse(response.data['is_active'])

    def test_assign_and_remove_students(self):
        exam = Exam.objects.create(title='Math')
        students = self.create_students(3)
        url = reverse('exam-students', args=[exam.pk])

        response = self.client.post(url, {'ids': [str(s.pk) for s in students]}, format='json')
        self.assertEqual(response.data['assigned'], 3)
        response = self.client.post(url, {'ids': [str(students[0].pk)]}, format='json')
        self.assertEqual(response.data['assigned'], 0)

        response = self.client.get(url)
        self.assertEqual(len(response.data), 3)
        self.assertFalse(response.data[0]['finished'])

        response = self.client.delete(url, {'ids': [str(students[0].pk)]}, format='json')
        self.assertEqual(response.data['removed'], 1)
        self.assertEqual(exam.assignments.count(), 2)

    def test_roster_pdf(self):
        exam = Exam.objects.create(title='Math')
        for student in self.create_students(60):
            ExamStudent.objects.create(exam=exam, student=student)
        response = self.client.get(reverse('exam-roster-pdf', args=[exam.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))

    def test_exam_stats(self):
        exam = Exam.objects.create(title='Math', is_active=True)
        question = Question.objects.create(exam=exam, question_text='2+2', question_type=Question.FILL, correct_answer='4')
        assignment = ExamStudent.objects.create(exam=exam, student=self.create_students(1)[0])
        services.record_answer(assignment, question.pk, '4')
        services.finish_exam(assignment)

        response = self.client.get(reverse('exam-stats', args=[exam.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['average_score'], 100.0)

    def test_questions_filtered_by_exam(self):
        first = Exam.objects.create(title='One')
        second = Exam.objects.create(title='Two')
        Question.objects.create(exam=first, question_text='a', question_type=Question.FILL, correct_answer='a')
        Question.objects.create(exam=second, question_text='b', question_type=Question.FILL, correct_answer='b')

        response = self.client.get(reverse('question-list'), {'exam': str(first.pk)})
        self.assertEqual([q['question_text'] for q in response.data], ['a'])

    def test_question_update_keeps_rules(self):
        exam = Exam.objects.create(title='One')
        question = Question.objects.create(
            exam=exam, question_text='Pick', option_a='x', option_b='y', correct_answer='A',
        )
        response = self.client.patch(reverse('question-detail', args=[question.pk]), {'correct_answer': 'c'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.patch(reverse('question-detail', args=[question.pk]), {'correct_answer': 'b'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['correct_answer'], 'B')

    def test_overview(self):
        exam = Exam.objects.create(title='Math', is_active=True)
        student = self.create_students(1)[0]
        ExamStudent.objects.create(exam=exam, student=student)
        Result.objects.create(exam=exam, student=student, score=80.0, total_questions=5)
        Exam.objects.create(title='History')

        response = self.client.get(reverse('panel_overview'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_exams'], 2)
        self.assertEqual(response.data['active_exams'], 1)
        self.assertEqual(response.data['total_students'], 1)
        self.assertEqual(response.data['average_score'], 80.0)
        averages = {item['title']: item['average_score'] for item in response.data['exam_averages']}
        self.assertEqual(averages, {'Math': 80.0, 'History': 0})
        counts = {item['title']: item['student_count'] for item in response.data['recent_exams']}
        self.assertEqual(counts, {'Math': 1, 'History': 0})

    def test_performance_counts_recently_active_students(self):
        exam = Exam.objects.create(title='Math', is_active=True)
        polling, idle, absent = [
            ExamStudent.objects.create(exam=exam, student=student) for student in self.create_students(3)
        ]
        services.exam_status(polling)
        ExamStudent.objects.filter(pk=idle.pk).update(last_activity=timezone.now() - timedelta(minutes=10))
        closed = Exam.objects.create(title='History')
        ExamStudent.objects.create(exam=closed, student=absent.student, last_activity=timezone.now())

        response = self.client.get(reverse('panel_performance'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['window_seconds'], 300)
        self.assertEqual(response.data['active_exams'], 1)
        self.assertEqual(response.data['active_students'], 1)
        row = response.data['exams'][0]
        self.assertEqual(row['title'], 'Math')
        self.assertEqual(row['student_count'], 3)
        self.assertEqual(row['active_students'], 1)

import csv
import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, Q
from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view
from rest_framework.response import Response

from examroom.models import Result
from liveresults.stats import exam_stats
from .codes import unique_entry_code
from .models import Department, Exam, ExamStudent, Question, Student
from . import pdf
from .serializers import (
    AssignmentSerializer,
    BulkStatusSerializer,
    DepartmentSerializer,
    ExamSerializer,
    QuestionSerializer,
    StudentIdsSerializer,
    StudentSerializer,
)

logger = logging.getLogger(__name__)


def parse_bool(value):
    if value is None or value == '':
        return None
    return str(value).lower() in ('1', 'true', 'yes', 'active')


class DepartmentViewSet(viewsets.ModelViewSet):
    serializer_class = DepartmentSerializer

    def get_queryset(self):
        return Department.objects.annotate(
            student_count=Count('students', distinct=True),
            exam_count=Count('exams', distinct=True),
        )


class StudentViewSet(viewsets.ModelViewSet):
    """
    list: students filtered by ?search=, ?department= and ?active=
    bulk-status / bulk-delete / regenerate-codes: act on a list of ids
    export-csv: the filtered list as a spreadsheet-friendly CSV
    """
    serializer_class = StudentSerializer

    def get_queryset(self):
        queryset = Student.objects.select_related('department')
        params = self.request.query_params

        search = (params.get('search') or '').strip()
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search)
                | Q(surname__icontains=search)
                | Q(phone__icontains=search)
                | Q(student_code__icontains=search)
            )
        department = params.get('department')
        if department:
            queryset = queryset.filter(department_id=department)
        active = parse_bool(params.get('active'))
        if active is not None:
            queryset = queryset.filter(active=active)
        return queryset

    def _selected(self, serializer_class=StudentIdsSerializer):
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data, Student.objects.filter(pk__in=serializer.validated_data['ids'])

    @action(detail=False, methods=['post'], url_path='bulk-status')
    def bulk_status(self, request):
        data, students = self._selected(BulkStatusSerializer)
        updated = students.update(active=data['active'])
        logger.info(f"Set active={data['active']} on {updated} students")
        return Response({'updated': updated})

    @action(detail=False, methods=['post'], url_path='bulk-delete')
    def bulk_delete(self, request):
        _, students = self._selected()
        deleted = students.count()
        students.delete()
        logger.info(f"Deleted {deleted} students")
        return Response({'deleted': deleted})

    @action(detail=False, methods=['post'], url_path='regenerate-codes')
    def regenerate_codes(self, request):
        _, students = self._selected()
        with transaction.atomic():
            for student in students:
                student.student_code = unique_entry_code(Student.objects.exclude(pk=student.pk))
                student.save(update_fields=['student_code', 'updated_at'])
        return Response(StudentSerializer(students, many=True).data)

    @action(detail=False, methods=['get'], url_path='export-csv')
    def export_csv(self, request):
        response = HttpResponse(content_type='text/csv; charset=utf-8')
        response['Content-Disposition'] = 'attachment; filename="students.csv"'
        # BOM so spreadsheet programs detect UTF-8
        response.write('\ufeff')

        writer = csv.writer(response)
        writer.writerow(['Name', 'Surname', 'Phone', 'Department', 'Status', 'Created'])
        for student in self.get_queryset():
            writer.writerow([
                student.name,
                student.surname,
                student.phone,
                student.department.name if student.department else '',
                'Active' if student.active else 'Inactive',
                student.created_at.strftime('%Y-%m-%d'),
            ])
        return response


class ExamViewSet(viewsets.ModelViewSet):
    serializer_class = ExamSerializer

    def get_queryset(self):
        return Exam.objects.select_related('department').annotate(
            question_count=Count('questions', distinct=True),
            student_count=Count('assignments', distinct=True),
        )

    def _set_active(self, is_active):
        exam = self.get_object()
        if is_active and not exam.questions.exists():
            return Response(
                {'error': 'An exam without questions cannot be activated.'},
                status=status.HTTP_400_BAD_REQUEST
            )
        Exam.objects.filter(pk=exam.pk).update(is_active=is_active)
        logger.info(f"Exam {exam.pk} {'activated' if is_active else 'deactivated'}")
        return Response(self.get_serializer(self.get_object()).data)

    @action(detail=True, methods=['post'])
    def activate(self, request, pk=None):
        return self._set_active(True)

    @action(detail=True, methods=['post'])
    def deactivate(self, request, pk=None):
        return self._set_active(False)

    @action(detail=True, methods=['get', 'post', 'delete'])
    def students(self, request, pk=None):
        exam = self.get_object()
        if request.method == 'GET':
            assignments = exam.assignments.select_related('student', 'student__department')
            return Response(AssignmentSerializer(assignments, many=True).data)

        serializer = StudentIdsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ids = serializer.validated_data['ids']

        if request.method == 'DELETE':
            removed, _ = exam.assignments.filter(student_id__in=ids).delete()
            return Response({'removed': removed})

        created = 0
        with transaction.atomic():
            for student in Student.objects.filter(pk__in=ids):
                _, was_created = ExamStudent.objects.get_or_create(exam=exam, student=student)
                created += int(was_created)
        logger.info(f"Assigned {created} students to exam {exam.pk}")
        return Response({'assigned': created}, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'], url_path='roster-pdf')
    def roster_pdf(self, request, pk=None):
        exam = self.get_object()
        assignments = exam.assignments.select_related('student').order_by('student__surname', 'student__name')
        response = HttpResponse(pdf.roster_pdf(exam, assignments), content_type='application/pdf')
        response['Content-Disposition'] = f'attachment; filename="exam-{exam.pk}-codes.pdf"'
        return response

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        return Response(exam_stats(self.get_object()))


class QuestionViewSet(viewsets.ModelViewSet):
    serializer_class = QuestionSerializer

    def get_queryset(self):
        queryset = Question.objects.all()
        exam = self.request.query_params.get('exam')
        if exam:
            queryset = queryset.filter(exam_id=exam)
        return queryset


@api_view(['GET'])
def overview(request):
    recent_scores = Exam.objects.annotate(average_score=Avg('results__score')).order_by('-created_at')[:5]
    recent_exams = Exam.objects.annotate(student_count=Count('assignments')).order_by('-created_at')[:4]
    average = Result.objects.aggregate(average=Avg('score'))['average']

    return Response({
        'total_exams': Exam.objects.count(),
        'active_exams': Exam.objects.filter(is_active=True).count(),
        'total_students': Student.objects.count(),
        'average_score': round(average, 2) if average is not None else 0,
        'exam_averages': [
            {
                'id': str(exam.pk),
                'title': exam.title,
                'average_score': round(exam.average_score or 0, 2),
            }
            for exam in recent_scores
        ],
        'recent_exams': [
            {
                'id': str(exam.pk),
                'title': exam.title,
                'is_active': exam.is_active,
                'created_at': exam.created_at,
                'student_count': exam.student_count,
            }
            for exam in recent_exams
        ],
    })


@api_view(['GET'])
def performance(request):
    """Active exams with the number of students seen within the activity window."""
    window = settings.EXAM_ACTIVITY_WINDOW_SECONDS
    since = timezone.now() - timedelta(seconds=window)
    exams = Exam.objects.filter(is_active=True).annotate(
        student_count=Count('assignments', distinct=True),
        active_students=Count(
            'assignments', filter=Q(assignments__last_activity__gt=since), distinct=True
        ),
    ).order_by('-created_at')

    rows = [
        {
            'id': str(exam.pk),
            'title': exam.title,
            'duration': exam.duration,
            'student_count': exam.student_count,
            'active_students': exam.active_students,
        }
        for exam in exams
    ]
    return Response({
        'window_seconds': window,
        'active_exams': len(rows),
        'active_students': sum(row['active_students'] for row in rows),
        'exams': rows,
    })

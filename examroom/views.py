import logging

from django.conf import settings
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.decorators import (
    api_view,
    authentication_classes,
    permission_classes,
    throttle_classes,
)
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from authentication.throttling import EntryCodeThrottle
from . import services
from .exceptions import ExamError, InvalidEntryToken
from .serializers import (
    AnswerSubmitSerializer,
    LoginSerializer,
    ResultSerializer,
    session_payload,
)
from .tokens import decode_entry_token, encode_entry_token

logger = logging.getLogger(__name__)

LOGIN_URL = '/exam/login/'


def error_response(error):
    body = {'error': error.message, 'reason': error.reason}
    if isinstance(error, InvalidEntryToken):
        body['redirect'] = LOGIN_URL
    return Response(body, status=error.status_code)


def server_error(action, error):
    logger.error(f"Error while {action}: {str(error)}")
    return Response(
        {'error': f'An error occurred while {action}.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


def assignment_for(request, exam_id):
    """Resolve the entry token cookie to the student's assignment on ``exam_id``."""
    token = decode_entry_token(request.COOKIES.get(settings.EXAM_ENTRY_TOKEN_COOKIE))
    return services.assignment_from_token(token, exam_id)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([EntryCodeThrottle])
def login(request):
    serializer = LoginSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Please enter your entry code.'}, status=status.HTTP_400_BAD_REQUEST)

    code = serializer.validated_data['student_code'].upper()
    try:
        assignment = services.login_with_code(code)
    except ExamError as e:
        logger.warning(f"Failed exam login with code {code}: {e.message}")
        return error_response(e)
    except Exception as e:
        return server_error('logging in', e)

    exam = assignment.exam
    token = encode_entry_token(exam.pk, assignment.student_id, assignment.student_code)
    response = Response({
        'message': 'Login successful.',
        'redirect': f'/exam/{exam.pk}/?code={assignment.student_code}',
        'exam_id': str(exam.pk),
        'exam_title': exam.title,
        'student': assignment.student.full_name,
    }, status=status.HTTP_200_OK)
    response.set_cookie(
        settings.EXAM_ENTRY_TOKEN_COOKIE,
        token,
        max_age=settings.EXAM_ENTRY_TOKEN_MAX_AGE,
        httponly=True,
        secure=not settings.DEBUG,
        samesite='Lax'
    )
    logger.info(f"Student {assignment.student_id} logged in to exam {exam.pk}")
    return response


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def logout(request):
    response = Response({'message': 'Logged out.', 'redirect': LOGIN_URL}, status=status.HTTP_200_OK)
    response.delete_cookie(settings.EXAM_ENTRY_TOKEN_COOKIE)
    return response


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def session(request, exam_id):
    try:
        assignment = assignment_for(request, exam_id)
        code = request.query_params.get('code')
        if code and code.strip().upper() != assignment.student_code:
            raise InvalidEntryToken()
        snapshot = services.initialize_session(assignment, now=timezone.now())
        return Response(session_payload(snapshot))
    except ExamError as e:
        return error_response(e)
    except Exception as e:
        return server_error('loading the exam', e)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def submit_answer(request, exam_id):
    serializer = AnswerSubmitSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

    try:
        assignment = assignment_for(request, exam_id)
        answer = services.record_answer(
            assignment,
            serializer.validated_data['question_id'],
            serializer.validated_data['answer'],
        )
    except ExamError as e:
        if not isinstance(e, InvalidEntryToken):
            logger.warning(f"Answer rejected for exam {exam_id}: {e.message}")
        return error_response(e)
    except Exception as e:
        return server_error('saving the answer', e)

    return Response({
        'message': 'Answer saved.',
        'question_id': str(answer.question_id),
        'answer': answer.student_answer,
    }, status=status.HTTP_200_OK)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def finish(request, exam_id):
    try:
        assignment = assignment_for(request, exam_id)
        result, created = services.finish_exam(assignment)
    except ExamError as e:
        return error_response(e)
    except Exception as e:
        return server_error('finishing the exam', e)

    data = dict(ResultSerializer(result).data)
    data['passed'] = result.score >= assignment.exam.passing_grade
    return Response(data, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def result(request, exam_id):
    try:
        assignment = assignment_for(request, exam_id)
        return Response(services.result_review(assignment))
    except ExamError as e:
        return error_response(e)
    except Exception as e:
        return server_error('loading the result', e)


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def exam_status(request, exam_id):
    try:
        assignment = assignment_for(request, exam_id)
        return Response(services.exam_status(assignment))
    except ExamError as e:
        return error_response(e)
    except Exception as e:
        return server_error('checking the exam status', e)

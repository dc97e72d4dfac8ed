"""Input validation for the portal forms.

Each ``validate_*`` function returns a cleaned dict or raises
``ValidationFailed`` with one message per offending field.
"""
import re
from datetime import date, datetime

from errors import ValidationFailed
from workflow import DocumentType, Role

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_RE = re.compile(r'^(\+?[0-9]{1,3})?[-. ]?([0-9]{3})[-. ]?([0-9]{3})[-. ]?([0-9]{4})$')
MIN_PASSWORD_LENGTH = 6
MAX_TITLE_LENGTH = 200
MAX_TEXT_LENGTH = 5000
MAX_ATTACHMENT_REF_LENGTH = 255

COMPLAINT_CATEGORIES = (
    'Water Supply',
    'Electricity',
    'Roads & Transportation',
    'Sanitation',
    'Public Health',
    'Education',
    'Agriculture',
    'Environment',
    'Public Property',
    'Other',
)

ANNOUNCEMENT_CATEGORIES = ('general', 'event', 'health', 'infrastructure', 'tax', 'emergency')

# field -> (kind, min length, message); 'date' fields must parse as YYYY-MM-DD
DOCUMENT_FORM_SCHEMAS = {
    DocumentType.BIRTH: {
        'child_name': ('text', 2, "Child's name is required"),
        'father_name': ('text', 2, "Father's name is required"),
        'mother_name': ('text', 2, "Mother's name is required"),
        'date_of_birth': ('date', 0, 'Date of birth is required'),
        'place_of_birth': ('text', 2, 'Place of birth is required'),
        'address': ('text', 5, 'Address is required'),
    },
    DocumentType.DEATH: {
        'deceased_name': ('text', 2, "Deceased person's name is required"),
        'applicant_name': ('text', 2, "Applicant's name is required"),
        'relationship': ('text', 2, 'Relationship to deceased is required'),
        'date_of_death': ('date', 0, 'Date of death is required'),
        'place_of_death': ('text', 2, 'Place of death is required'),
        'cause_of_death': ('text', 2, 'Cause of death is required'),
        'address': ('text', 5, 'Address is required'),
    },
    DocumentType.MARRIAGE: {
        'groom_name': ('text', 2, "Groom's name is required"),
        'bride_name': ('text', 2, "Bride's name is required"),
        'date_of_marriage': ('date', 0, 'Date of marriage is required'),
        'place_of_marriage': ('text', 2, 'Place of marriage is required'),
        'address': ('text', 5, 'Address is required'),
    },
    DocumentType.INCOME: {},
    DocumentType.RESIDENCE: {},
    DocumentType.OTHER: {},
}


def parse_date_input(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = (value or '').strip() if isinstance(value, str) else ''
    if not text:
        return None
    try:
        return datetime.strptime(text, '%Y-%m-%d').date()
    except ValueError:
        return None


def validate_contact(contact):
    if not contact:
        return True
    return bool(PHONE_RE.match(contact))


def validate_email(email):
    if not email:
        return False
    return bool(EMAIL_RE.match(email))


def _text(data, key):
    value = data.get(key)
    if value is None:
        return ''
    return str(value).strip()


def _optional_text(data, key):
    return _text(data, key) or None


def _raise_if(errors, message='Please correct the highlighted fields.'):
    if errors:
        raise ValidationFailed(message, fields=errors)


def validate_signup(data, allow_role=False):
    errors = {}
    email = _text(data, 'email').lower()
    password = data.get('password') or ''
    confirm = data.get('confirm_password')
    name = _text(data, 'name')
    phone = _optional_text(data, 'phone')

    if not validate_email(email):
        errors['email'] = 'Please enter a valid email address'
    if len(password) < MIN_PASSWORD_LENGTH:
        errors['password'] = f'Must be at least {MIN_PASSWORD_LENGTH} characters'
    elif confirm is not None and confirm != password:
        errors['confirm_password'] = 'Passwords do not match'
    if not name:
        errors['name'] = 'This field is required'
    if phone and not validate_contact(phone):
        errors['phone'] = 'Please enter a valid phone number'

    metadata = {'name': name, 'phone': phone, 'address': _optional_text(data, 'address')}
    requested_role = _text(data, 'role')
    if allow_role and requested_role:
        if requested_role not in {r.value for r in Role}:
            errors['role'] = 'Role must be citizen, staff or admin.'
        else:
            metadata['role'] = requested_role

    _raise_if(errors)
    return {'email': email, 'password': password, 'metadata': metadata}


def validate_login(data):
    email = _text(data, 'email').lower()
    password = data.get('password') or ''
    errors = {}
    if not email:
        errors['email'] = 'This field is required'
    if not password:
        errors['password'] = 'This field is required'
    _raise_if(errors)
    return {'email': email, 'password': password}


def validate_profile_update(data):
    errors = {}
    name = _text(data, 'name')
    phone = _optional_text(data, 'phone')
    if not name:
        errors['name'] = 'Name is required'
    if phone and not validate_contact(phone):
        errors['phone'] = 'Please enter a valid phone number'
    _raise_if(errors)
    return {'name': name, 'phone': phone, 'address': _optional_text(data, 'address')}


def validate_complaint_input(data):
    errors = {}
    title = _text(data, 'title')
    description = _text(data, 'description')
    category = _text(data, 'category')

    if not title:
        errors['title'] = 'Title is required'
    elif len(title) > MAX_TITLE_LENGTH:
        errors['title'] = f'Title must be at most {MAX_TITLE_LENGTH} characters'
    if not description:
        errors['description'] = 'Description is required'
    elif len(description) > MAX_TEXT_LENGTH:
        errors['description'] = 'Description is too long'
    if category not in COMPLAINT_CATEGORIES:
        errors['category'] = 'Please select a valid category'

    _raise_if(errors)
    return {
        'title': title,
        'description': description,
        'category': category,
        'location': _optional_text(data, 'location'),
    }


def normalize_attachments(raw):
    """List of non-empty references, or None when ``raw`` is neither a string nor a list."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    elif not isinstance(raw, (list, tuple)):
        return None
    return [str(item).strip() for item in raw if item is not None and str(item).strip()]


def validate_form_details(document_type, details):
    """Check the type-specific fields; returns (cleaned, errors)."""
    schema = DOCUMENT_FORM_SCHEMAS.get(document_type, {})
    details = details if isinstance(details, dict) else {}
    cleaned = {}
    errors = {}
    today = date.today()

    for field, (kind, min_length, message) in schema.items():
        if kind == 'date':
            parsed = parse_date_input(details.get(field))
            if parsed is None:
                errors[f'form_details.{field}'] = message
            elif parsed > today:
                errors[f'form_details.{field}'] = 'Date cannot be in the future'
            else:
                cleaned[field] = parsed.isoformat()
            continue
        value = _text(details, field)
        if len(value) < max(min_length, 1):
            errors[f'form_details.{field}'] = message
        else:
            cleaned[field] = value

    # Extra keys from richer clients are kept as plain text.
    for key, value in details.items():
        if key not in schema and value is not None:
            cleaned.setdefault(str(key), str(value).strip())
    return cleaned, errors


def validate_document_request_input(data, max_attachments=10):
    errors = {}
    raw_type = _text(data, 'document_type')
    try:
        document_type = DocumentType(raw_type)
    except ValueError:
        document_type = None
        errors['document_type'] = 'Please select a valid document type'

    purpose = _text(data, 'purpose')
    if len(purpose) < 5:
        errors['purpose'] = 'Purpose is required'

    attachments = normalize_attachments(data.get('attachments'))
    if attachments is None:
        errors['attachments'] = 'Attachments must be a list of document references'
    elif not attachments:
        errors['attachments'] = 'Please upload required documents'
    elif len(attachments) > max_attachments:
        errors['attachments'] = f'At most {max_attachments} documents can be attached'
    elif any(len(ref) > MAX_ATTACHMENT_REF_LENGTH for ref in attachments):
        errors['attachments'] = 'Attachment reference is too long'

    form_details = {}
    if document_type is not None:
        form_details, detail_errors = validate_form_details(document_type, data.get('form_details'))
        errors.update(detail_errors)

    _raise_if(errors)
    return {
        'document_type': document_type.value,
        'purpose': purpose,
        'attachments': attachments,
        'form_details': form_details,
        'additional_notes': _optional_text(data, 'additional_notes'),
    }


def validate_announcement(data):
    errors = {}
    title = _text(data, 'title')
    content = _text(data, 'content')
    category = _text(data, 'category').lower()
    if not title:
        errors['title'] = 'Title is required'
    elif len(title) > MAX_TITLE_LENGTH:
        errors['title'] = f'Title must be at most {MAX_TITLE_LENGTH} characters'
    if not content:
        errors['content'] = 'Content is required'
    if category not in ANNOUNCEMENT_CATEGORIES:
        errors['category'] = 'Please select a valid category'
    _raise_if(errors)

    important = data.get('important')
    if isinstance(important, str):
        important = important.strip().lower() in ('1', 'true', 'yes', 'on')
    return {'title': title, 'content': content, 'category': category, 'important': bool(important)}


def validate_staff_input(data):
    errors = {}
    email = _text(data, 'email').lower()
    position = _text(data, 'position')
    department = _text(data, 'department')
    if not validate_email(email):
        errors['email'] = 'Please enter a valid email address'
    if not position:
        errors['position'] = 'Position is required'
    if not department:
        errors['department'] = 'Department is required'
    _raise_if(errors, 'Please fill in all required fields')
    return {'email': email, 'position': position, 'department': department}


def validate_comment(data):
    text = _text(data, 'text')
    if not text:
        raise ValidationFailed('Comment cannot be empty.', fields={'text': 'This field is required'})
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationFailed('Comment is too long.', fields={'text': 'Comment is too long'})
    return {'text': text}


def parse_expected_version(raw_value):
    if raw_value in (None, ''):
        return None
    try:
        parsed = int(str(raw_value).strip())
    except (TypeError, ValueError):
        raise ValidationFailed('Invalid version.', fields={'expected_version': 'Must be a positive integer'})
    if parsed <= 0:
        raise ValidationFailed('Invalid version.', fields={'expected_version': 'Must be a positive integer'})
    return parsed

"""Enumerations shared by ORM models, API schemas and services."""

from enum import Enum


class Role(str, Enum):
    PUBLIC = "PUBLIC"
    APPLICANT = "APPLICANT"
    ADMIN_OFFICER = "ADMIN_OFFICER"
    REVIEWER = "REVIEWER"
    EXECUTIVE_DIRECTOR = "EXECUTIVE_DIRECTOR"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"


class ApplicantType(str, Enum):
    STUDENT = "STUDENT"
    NGO = "NGO"
    CONSULTANT = "CONSULTANT"
    GOVERNMENT = "GOVERNMENT"
    ACADEMIC = "ACADEMIC"
    OTHER = "OTHER"


class ApplicationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    SCREENING = "SCREENING"
    RETURNED = "RETURNED"
    IN_REVIEW = "IN_REVIEW"
    ED_DECISION = "ED_DECISION"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE_RESEARCH = "ACTIVE_RESEARCH"
    FINAL_SUBMISSION_PENDING = "FINAL_SUBMISSION_PENDING"
    COMPLETED = "COMPLETED"
    PUBLISHED = "PUBLISHED"


class DataType(str, Enum):
    AGGREGATED = "AGGREGATED"
    PATIENT_LEVEL = "PATIENT_LEVEL"


class SensitivityLevel(str, Enum):
    PUBLIC = "PUBLIC"
    RESTRICTED = "RESTRICTED"


class DocumentType(str, Enum):
    ETHICS_LETTER = "ETHICS_LETTER"
    SUPERVISOR_LETTER = "SUPERVISOR_LETTER"
    INSTITUTION_LETTER = "INSTITUTION_LETTER"
    PROPOSAL = "PROPOSAL"
    FINAL_PAPER = "FINAL_PAPER"
    TOOL = "TOOL"
    DATASET = "DATASET"
    CODEBOOK = "CODEBOOK"
    APPROVAL_LETTER = "APPROVAL_LETTER"
    REJECTION_LETTER = "REJECTION_LETTER"
    OTHER = "OTHER"


class ReviewStage(str, Enum):
    PROGRAM = "PROGRAM"
    HIS = "HIS"
    DATA_OWNER = "DATA_OWNER"
    TECHNICAL = "TECHNICAL"
    OTHER = "OTHER"


class Recommendation(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class DecisionType(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ExtensionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class IntentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

from .files import SourceFile
from .jobs import JobStatus, ProcessingJob
from .operations import Crop, OperationSet, Scale, Trim

from .Errors import TemplateContractError, DisparityTypeError, ChannelCountMismatch, ImageTooSmall, ShapeMismatch
from .Channels import IChannels, RawIntensity, BitPlanes
from .Warp import IWarp, RigidBodyWarp
from .Disparity import DisparityPyramidLevel, scale_intrinsic
from .PixelSelector import PixelLocations, ValidPixelPredicate, get_valid_pixel_locations
from .Executor import IExecutor, SequentialExecutor, ThreadedExecutor
from .Storage import ITemplateStorage, ChannelMajorStorage, PointMajorStorage
from .Observer import IResidualObserver, ResidualReport, LoggingObserver, RecordingObserver
from .TemplateData import TemplateData

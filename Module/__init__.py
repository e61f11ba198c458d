from .Template.Channels import IChannels
from .Template.Warp     import IWarp
from .Template.Executor import IExecutor
from .Template.Storage  import ITemplateStorage
from .Template.Observer import IResidualObserver
from .Template.TemplateData import TemplateData

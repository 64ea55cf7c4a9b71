# Lifecycle services
#
# - LifecycleOrchestrator: kører state machine for én FileTask
# - LifecycleStages: entry actions for Moving, Transforming og Finalizing
# - LifecycleWorkerPool: parallelle workers over en kø af filnavne
# - NotificationService, ReconciliationService, InboundWatcher

"""
Storyflow Services

- multimedia: provider configuration, adapters and the generation facade
- video_generation: async task poller, downloads, job snapshots
- batch: unattended batch scheduler
- clone: capture -> analyze -> generate workflow
- streaming: progress events
"""
